import uuid
from typing import List

from fastapi import APIRouter, Depends
from fastapi_utils.cbv import cbv

from core.get_current_user import get_current_actor
from core.safe_handler import safe_handler
from schemas.schema import Actor, PaymentMethodCreate, PaymentMethodOut
from services.lifecycle import Lifecycle, get_lifecycle

router = APIRouter(tags=["Payment Methods"])


@cbv(router)
class PaymentMethodRoutes:
    lifecycle: Lifecycle = Depends(get_lifecycle)
    actor: Actor = Depends(get_current_actor)

    @router.get("/", response_model=List[PaymentMethodOut])
    @safe_handler
    async def list_methods(self):
        return await self.lifecycle.methods.list(self.actor)

    @router.post("/", response_model=PaymentMethodOut, status_code=201)
    @safe_handler
    async def add_method(self, data: PaymentMethodCreate):
        return await self.lifecycle.methods.add(self.actor, data)

    @router.post("/{method_id}/default", response_model=PaymentMethodOut)
    @safe_handler
    async def set_default(self, method_id: uuid.UUID):
        return await self.lifecycle.methods.set_default(self.actor, method_id)

    @router.delete("/{method_id}")
    @safe_handler
    async def remove_method(self, method_id: uuid.UUID):
        return await self.lifecycle.methods.remove(self.actor, method_id)
