import uuid

from sqlalchemy import select

from models.enums import VerificationRequestStatus
from models.models import ProviderVerificationRequest

from .base_repo import BaseRepo


class VerificationRequestRepo(BaseRepo):
    async def create(
        self, request: ProviderVerificationRequest
    ) -> ProviderVerificationRequest:
        return await self.db_add_and_flush(request)

    async def get_for_update(
        self, request_id: uuid.UUID
    ) -> ProviderVerificationRequest | None:
        return await self._fetch_locked(
            select(ProviderVerificationRequest).where(
                ProviderVerificationRequest.id == request_id
            )
        )

    async def get_pending(
        self, provider_id: uuid.UUID
    ) -> ProviderVerificationRequest | None:
        await self.db_flush()
        result = await self.db.execute(
            select(ProviderVerificationRequest)
            .where(
                ProviderVerificationRequest.provider_id == provider_id,
                ProviderVerificationRequest.status
                == VerificationRequestStatus.PENDING,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_provider(self, provider_id: uuid.UUID):
        result = await self.db.execute(
            select(ProviderVerificationRequest)
            .where(ProviderVerificationRequest.provider_id == provider_id)
            .order_by(ProviderVerificationRequest.submitted_at.desc())
        )
        return result.scalars().all()

    async def list_pending(self, limit: int = 50):
        result = await self.db.execute(
            select(ProviderVerificationRequest)
            .where(
                ProviderVerificationRequest.status
                == VerificationRequestStatus.PENDING
            )
            .order_by(ProviderVerificationRequest.submitted_at)
            .limit(limit)
        )
        return result.scalars().all()
