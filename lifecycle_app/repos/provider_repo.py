import uuid

from sqlalchemy import select

from models.models import Provider

from .base_repo import BaseRepo


class ProviderRepo(BaseRepo):
    async def get_id(self, provider_id: uuid.UUID) -> Provider | None:
        result = await self.db.execute(select(Provider).where(Provider.id == provider_id))
        return result.scalar_one_or_none()

    async def get_for_update(self, provider_id: uuid.UUID) -> Provider | None:
        return await self._fetch_locked(
            select(Provider).where(Provider.id == provider_id)
        )

    async def get_by_user(self, user_id: uuid.UUID) -> Provider | None:
        result = await self.db.execute(select(Provider).where(Provider.user_id == user_id))
        return result.scalar_one_or_none()
