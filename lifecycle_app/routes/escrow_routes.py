import uuid

from fastapi import APIRouter, Depends
from fastapi_utils.cbv import cbv

from core.get_current_user import get_current_actor
from core.safe_handler import safe_handler
from schemas.schema import (
    Actor,
    AssignProviderIn,
    BookingReason,
    BookingRejectIn,
    DisputeResolveIn,
    MaintenanceTicketCreate,
    MaintenanceTicketOut,
    PaymentInstrumentIn,
    PaymentOut,
)
from services.lifecycle import Lifecycle, get_lifecycle

router = APIRouter(tags=["Maintenance Escrow"])


@cbv(router)
class EscrowRoutes:
    lifecycle: Lifecycle = Depends(get_lifecycle)
    actor: Actor = Depends(get_current_actor)

    @router.post("/", response_model=MaintenanceTicketOut, status_code=201)
    @safe_handler
    async def create_ticket(self, data: MaintenanceTicketCreate):
        return await self.lifecycle.escrow.create_ticket(data, self.actor)

    @router.get("/{ticket_id}", response_model=MaintenanceTicketOut)
    @safe_handler
    async def get_ticket(self, ticket_id: uuid.UUID):
        return await self.lifecycle.escrow.get_ticket(ticket_id, self.actor)

    @router.post("/{ticket_id}/assign", response_model=MaintenanceTicketOut)
    @safe_handler
    async def assign(self, ticket_id: uuid.UUID, data: AssignProviderIn):
        return await self.lifecycle.escrow.assign_provider(
            ticket_id, data.provider_id, self.actor
        )

    @router.post("/{ticket_id}/start", response_model=MaintenanceTicketOut)
    @safe_handler
    async def start(self, ticket_id: uuid.UUID):
        return await self.lifecycle.escrow.start_work(ticket_id, self.actor)

    @router.post("/{ticket_id}/fund", response_model=PaymentOut, status_code=201)
    @safe_handler
    async def fund(self, ticket_id: uuid.UUID, data: PaymentInstrumentIn):
        return await self.lifecycle.escrow.fund(ticket_id, self.actor, data)

    @router.post("/{ticket_id}/complete", response_model=MaintenanceTicketOut)
    @safe_handler
    async def complete(self, ticket_id: uuid.UUID):
        return await self.lifecycle.escrow.complete_ticket(ticket_id, self.actor)

    @router.post("/{ticket_id}/reject", response_model=MaintenanceTicketOut)
    @safe_handler
    async def reject(self, ticket_id: uuid.UUID, data: BookingRejectIn):
        return await self.lifecycle.escrow.reject_ticket(
            ticket_id, self.actor, data.reason
        )

    @router.post("/{ticket_id}/release", response_model=PaymentOut)
    @safe_handler
    async def release(self, ticket_id: uuid.UUID):
        return await self.lifecycle.escrow.release(ticket_id, self.actor)

    @router.post("/{ticket_id}/return", response_model=PaymentOut)
    @safe_handler
    async def return_funds(self, ticket_id: uuid.UUID, data: BookingReason):
        return await self.lifecycle.escrow.return_funds(
            ticket_id, self.actor, data.reason
        )

    @router.post("/{ticket_id}/dispute", response_model=MaintenanceTicketOut)
    @safe_handler
    async def resolve_dispute(self, ticket_id: uuid.UUID, data: DisputeResolveIn):
        return await self.lifecycle.escrow.resolve_dispute(
            ticket_id, data.resolution, data.reason, self.actor
        )
