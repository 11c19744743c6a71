import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, or_, select

from models.enums import (
    ACTIVE_PAYMENT_STATUSES,
    EscrowState,
    PaymentStatus,
    PaymentType,
)
from models.models import Payment

from .base_repo import BaseRepo


class PaymentRepo(BaseRepo):
    async def create(self, payment: Payment) -> Payment:
        return await self.db_add_and_flush(payment)

    async def get_id(self, payment_id: uuid.UUID) -> Payment | None:
        result = await self.db.execute(select(Payment).where(Payment.id == payment_id))
        return result.scalar_one_or_none()

    async def get_for_update(self, payment_id: uuid.UUID) -> Payment | None:
        return await self._fetch_locked(
            select(Payment).where(Payment.id == payment_id)
        )

    async def find_by_reference(
        self, provider_ref: str, internal_ref: str | None = None
    ) -> Payment | None:
        """Callbacks may arrive before ``external_ref`` is stored, so the
        internal transaction reference is accepted as a fallback."""
        conditions = [Payment.external_ref == provider_ref]
        if internal_ref:
            conditions.append(Payment.transaction_ref == internal_ref)
        result = await self.db.execute(
            select(Payment.id).where(or_(*conditions)).limit(2)
        )
        ids = list(result.scalars().all())
        if len(ids) != 1:
            if not ids and not internal_ref:
                # some providers echo our reference as their own
                result = await self.db.execute(
                    select(Payment.id).where(Payment.transaction_ref == provider_ref)
                )
                ids = list(result.scalars().all())
            if len(ids) != 1:
                return None
        return await self.get_id(ids[0])

    async def find_booking_payments(self, booking_id: uuid.UUID):
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.booking_id == booking_id,
                Payment.type != PaymentType.REFUND,
            )
            .order_by(Payment.created_at.desc())
        )
        return result.scalars().all()

    async def find_active_booking_payment(self, booking_id: uuid.UUID) -> Payment | None:
        await self.db_flush()
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.booking_id == booking_id,
                Payment.type != PaymentType.REFUND,
                Payment.status.in_(ACTIVE_PAYMENT_STATUSES),
            )
            .order_by(Payment.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def find_latest_booking_payment(self, booking_id: uuid.UUID) -> Payment | None:
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.booking_id == booking_id,
                Payment.type != PaymentType.REFUND,
            )
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def settled_booking_payments(self, booking_id: uuid.UUID):
        await self.db_flush()
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.booking_id == booking_id,
                Payment.type != PaymentType.REFUND,
                Payment.status.in_([PaymentStatus.COMPLETED, PaymentStatus.REFUNDED]),
            )
            .order_by(Payment.created_at)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def find_ticket_escrow(self, ticket_id: uuid.UUID) -> Payment | None:
        await self.db_flush()
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.maintenance_ticket_id == ticket_id,
                Payment.is_escrow.is_(True),
                Payment.status.in_(ACTIVE_PAYMENT_STATUSES),
            )
            .order_by(Payment.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def refunds_for(self, payment_id: uuid.UUID):
        result = await self.db.execute(
            select(Payment)
            .where(Payment.parent_payment_id == payment_id)
            .order_by(Payment.created_at)
        )
        return result.scalars().all()

    async def in_flight_refund_total(self, payment_id: uuid.UUID) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.parent_payment_id == payment_id,
                Payment.type == PaymentType.REFUND,
                Payment.status.in_([PaymentStatus.PENDING, PaymentStatus.PROCESSING]),
            )
        )
        return Decimal(str(result.scalar_one()))

    async def list_stale_processing(self, older_than: datetime, limit: int = 100):
        result = await self.db.execute(
            select(Payment.id)
            .where(
                Payment.status == PaymentStatus.PROCESSING,
                Payment.submitted_at.is_not(None),
                Payment.submitted_at < older_than,
                Payment.escrow_state == EscrowState.NONE,
            )
            .order_by(Payment.submitted_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_for_user(self, user_id: uuid.UUID, limit: int = 50):
        result = await self.db.execute(
            select(Payment)
            .where(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
            .limit(limit)
        )
        return result.scalars().all()
