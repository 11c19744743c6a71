import uuid

from sqlalchemy import select, update

from models.models import PaymentMethod

from .base_repo import BaseRepo


class PaymentMethodRepo(BaseRepo):
    async def create(self, method: PaymentMethod) -> PaymentMethod:
        return await self.db_add_and_flush(method)

    async def get_id(self, method_id: uuid.UUID) -> PaymentMethod | None:
        result = await self.db.execute(
            select(PaymentMethod).where(PaymentMethod.id == method_id)
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: uuid.UUID):
        result = await self.db.execute(
            select(PaymentMethod)
            .where(PaymentMethod.user_id == user_id)
            .order_by(PaymentMethod.is_default.desc(), PaymentMethod.created_at.desc())
        )
        return result.scalars().all()

    async def count_for_user(self, user_id: uuid.UUID) -> int:
        return len(await self.list_for_user(user_id))

    async def clear_default(self, user_id: uuid.UUID):
        await self.db.execute(
            update(PaymentMethod)
            .where(PaymentMethod.user_id == user_id, PaymentMethod.is_default.is_(True))
            .values(is_default=False)
            .execution_options(synchronize_session="fetch")
        )

    async def delete(self, method: PaymentMethod):
        await self.db.delete(method)
        await self.db_flush()
