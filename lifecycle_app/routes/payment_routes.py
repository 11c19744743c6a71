import uuid
from typing import List

from fastapi import APIRouter, Depends
from fastapi_utils.cbv import cbv

from core.get_current_user import get_current_actor
from core.safe_handler import safe_handler
from schemas.schema import Actor, BookingReason, PaymentOut, RefundRequest
from services.lifecycle import Lifecycle, get_lifecycle

router = APIRouter(tags=["Payments"])


@cbv(router)
class PaymentRoutes:
    lifecycle: Lifecycle = Depends(get_lifecycle)

    @router.get("/", response_model=List[PaymentOut])
    @safe_handler
    async def my_payments(self, actor: Actor = Depends(get_current_actor)):
        return await self.lifecycle.processor.list_for_user(actor)

    @router.get("/{payment_id}", response_model=PaymentOut)
    @safe_handler
    async def get_payment(
        self, payment_id: uuid.UUID, actor: Actor = Depends(get_current_actor)
    ):
        return await self.lifecycle.processor.get(payment_id, actor)

    @router.post("/{payment_id}/refund", response_model=PaymentOut, status_code=201)
    @safe_handler
    async def refund(
        self,
        payment_id: uuid.UUID,
        data: RefundRequest,
        actor: Actor = Depends(get_current_actor),
    ):
        return await self.lifecycle.processor.refund(
            payment_id, data.amount, data.reason, actor
        )

    @router.post("/{payment_id}/cancel", response_model=PaymentOut)
    @safe_handler
    async def cancel(
        self,
        payment_id: uuid.UUID,
        data: BookingReason,
        actor: Actor = Depends(get_current_actor),
    ):
        return await self.lifecycle.processor.cancel_unsubmitted(
            payment_id, actor, data.reason
        )
