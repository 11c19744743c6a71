import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi_utils.cbv import cbv

from core.get_current_user import get_current_actor, get_optional_actor
from core.safe_handler import safe_handler
from schemas.schema import (
    Actor,
    BookingCreate,
    BookingOut,
    BookingReason,
    BookingRejectIn,
    PaymentInstrumentIn,
    PaymentOut,
)
from services.lifecycle import Lifecycle, get_lifecycle

router = APIRouter(tags=["Bookings"])


@cbv(router)
class BookingRoutes:
    lifecycle: Lifecycle = Depends(get_lifecycle)

    @router.post("/", response_model=BookingOut, status_code=201)
    @safe_handler
    async def create_booking(
        self,
        data: BookingCreate,
        actor: Optional[Actor] = Depends(get_optional_actor),
    ):
        return await self.lifecycle.bookings.create_booking(data, actor)

    @router.get("/", response_model=List[BookingOut])
    @safe_handler
    async def my_bookings(self, actor: Actor = Depends(get_current_actor)):
        return await self.lifecycle.bookings.list_bookings(actor)

    @router.get("/{booking_id}", response_model=BookingOut)
    @safe_handler
    async def get_booking(
        self, booking_id: uuid.UUID, actor: Actor = Depends(get_current_actor)
    ):
        return await self.lifecycle.bookings.get_booking(booking_id, actor)

    @router.post("/{booking_id}/confirm", response_model=BookingOut)
    @safe_handler
    async def confirm(
        self, booking_id: uuid.UUID, actor: Actor = Depends(get_current_actor)
    ):
        return await self.lifecycle.bookings.confirm(booking_id, actor)

    @router.post("/{booking_id}/reject", response_model=BookingOut)
    @safe_handler
    async def reject(
        self,
        booking_id: uuid.UUID,
        data: BookingRejectIn,
        actor: Actor = Depends(get_current_actor),
    ):
        return await self.lifecycle.bookings.reject(booking_id, actor, data.reason)

    @router.post("/{booking_id}/cancel", response_model=BookingOut)
    @safe_handler
    async def cancel(
        self,
        booking_id: uuid.UUID,
        data: BookingReason,
        actor: Actor = Depends(get_current_actor),
    ):
        return await self.lifecycle.bookings.cancel(booking_id, actor, data.reason)

    @router.post("/{booking_id}/complete", response_model=BookingOut)
    @safe_handler
    async def complete(
        self, booking_id: uuid.UUID, actor: Actor = Depends(get_current_actor)
    ):
        return await self.lifecycle.bookings.complete(booking_id, actor)

    @router.post("/{booking_id}/payments", response_model=PaymentOut, status_code=201)
    @safe_handler
    async def initiate_payment(
        self,
        booking_id: uuid.UUID,
        data: PaymentInstrumentIn,
        actor: Actor = Depends(get_current_actor),
    ):
        return await self.lifecycle.bookings.initiate_payment(booking_id, actor, data)

    @router.get("/{booking_id}/payments", response_model=List[PaymentOut])
    @safe_handler
    async def booking_payments(
        self, booking_id: uuid.UUID, actor: Actor = Depends(get_current_actor)
    ):
        return await self.lifecycle.bookings.list_payments(booking_id, actor)
