import uuid
from datetime import date

from sqlalchemy import select

from models.enums import BookingKind, BookingStatus
from models.models import Booking, Property

from .base_repo import BaseRepo


class BookingRepo(BaseRepo):
    async def create(self, booking: Booking) -> Booking:
        return await self.db_add_and_flush(booking)

    async def get_id(self, booking_id: uuid.UUID) -> Booking | None:
        result = await self.db.execute(select(Booking).where(Booking.id == booking_id))
        return result.scalar_one_or_none()

    async def get_for_update(self, booking_id: uuid.UUID) -> Booking | None:
        return await self._fetch_locked(
            select(Booking).where(Booking.id == booking_id)
        )

    async def get_property(self, property_id: uuid.UUID) -> Property | None:
        result = await self.db.execute(
            select(Property).where(Property.id == property_id)
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: uuid.UUID, limit: int = 50):
        result = await self.db.execute(
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc())
            .limit(limit)
        )
        return result.scalars().all()

    async def list_due_stays(self, today: date, limit: int = 200):
        result = await self.db.execute(
            select(Booking.id)
            .where(
                Booking.kind == BookingKind.BOOKING,
                Booking.status == BookingStatus.CONFIRMED,
                Booking.close_requested_status.is_(None),
                Booking.check_out_date.is_not(None),
                Booking.check_out_date < today,
            )
            .order_by(Booking.check_out_date)
            .limit(limit)
        )
        return list(result.scalars().all())
