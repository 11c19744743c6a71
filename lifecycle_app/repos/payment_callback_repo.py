from sqlalchemy import select

from models.models import PaymentCallback

from .base_repo import BaseRepo


class PaymentCallbackRepo(BaseRepo):
    def log(self, callback: PaymentCallback) -> PaymentCallback:
        self.db.add(callback)
        return callback

    async def list_for_reference(self, provider_ref: str):
        result = await self.db.execute(
            select(PaymentCallback)
            .where(PaymentCallback.provider_ref == provider_ref)
            .order_by(PaymentCallback.id)
        )
        return result.scalars().all()
