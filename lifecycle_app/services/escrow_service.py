import logging
import uuid
from functools import partial

from core.errors import (
    ConflictError,
    IllegalTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ProviderFailure,
    ProviderTimeoutError,
    ValidationError,
)
from core.keyed_lock import payment_locks, ticket_locks
from core.money import normalize_currency, quantize, to_amount
from core.settings import settings
from core.state_machine import TICKET_EDGES, ensure_transition
from models.enums import (
    DisputeResolution,
    EntityType,
    EscrowState,
    PaymentStatus,
    PaymentType,
    TicketStatus,
)
from models.models import MaintenanceTicket, Payment
from models.utils import utcnow
from policy.lifecycle_policy import LifecyclePolicy
from repos.booking_repo import BookingRepo
from repos.maintenance_ticket_repo import MaintenanceTicketRepo
from repos.payment_repo import PaymentRepo
from repos.provider_repo import ProviderRepo
from schemas.schema import (
    SYSTEM_ACTOR,
    Actor,
    MaintenanceTicketCreate,
    PaymentInstrumentIn,
)
from security.security_generate import reference_generate

from .payment_method_service import PaymentMethodService
from .payment_processor import PaymentProcessor

logger = logging.getLogger(__name__)


class EscrowService:
    """Maintenance tickets and the escrow that pays for them.

    Funds are captured from the payer into ``held`` and leave it exactly once:
    released to the assigned provider when the work is done, or returned to
    the payer when the ticket is rejected or a dispute goes their way.
    """

    def __init__(self, db, processor: PaymentProcessor | None = None):
        self.db = db
        self.processor = processor or PaymentProcessor(db)
        self.ticket_repo: MaintenanceTicketRepo = MaintenanceTicketRepo(db)
        self.provider_repo: ProviderRepo = ProviderRepo(db)
        self.payment_repo: PaymentRepo = PaymentRepo(db)
        self.booking_repo: BookingRepo = BookingRepo(db)
        self.methods: PaymentMethodService = PaymentMethodService(db)
        self.processor.subscribe(self._on_payment_event)

    def _move(self, ticket: MaintenanceTicket, target: TicketStatus, actor, reason=None):
        previous = ticket.status
        ensure_transition("maintenance_ticket", TICKET_EDGES, previous, target)
        ticket.status = target
        if target == TicketStatus.COMPLETED:
            ticket.completed_at = utcnow()
        self.processor.record(
            EntityType.MAINTENANCE_TICKET, ticket.id, previous, target, actor, reason
        )

    async def _get_locked(self, ticket_id: uuid.UUID) -> MaintenanceTicket:
        ticket = await self.ticket_repo.get_for_update(ticket_id)
        if not ticket:
            raise NotFoundError("Maintenance ticket not found", ticket_id=str(ticket_id))
        return ticket

    async def get_ticket(self, ticket_id: uuid.UUID, actor: Actor) -> MaintenanceTicket:
        ticket = await self.ticket_repo.get_id(ticket_id)
        if not ticket:
            raise NotFoundError("Maintenance ticket not found", ticket_id=str(ticket_id))
        provider = (
            await self.provider_repo.get_id(ticket.assigned_provider_id)
            if ticket.assigned_provider_id
            else None
        )
        if not (
            LifecyclePolicy.is_ticket_party(actor, ticket)
            or (provider and provider.user_id == actor.id)
        ):
            raise PermissionDeniedError("You cannot view this ticket")
        return ticket

    async def create_ticket(
        self, data: MaintenanceTicketCreate, actor: Actor
    ) -> MaintenanceTicket:
        currency = normalize_currency(data.currency, settings.DEFAULT_CURRENCY)
        amount = to_amount(data.escrow_amount, currency, field="escrow_amount")

        async with self.processor.unit_of_work():
            owner_id = data.owner_id
            if data.property_id:
                property = await self.booking_repo.get_property(data.property_id)
                if not property:
                    raise NotFoundError("Property not found")
                owner_id = owner_id or property.owner_id

            ticket = await self.ticket_repo.create(
                MaintenanceTicket(
                    id=uuid.uuid4(),
                    title=data.title,
                    property_id=data.property_id,
                    payer_id=actor.id,
                    owner_id=owner_id,
                    status=TicketStatus.PENDING,
                    escrow_amount=amount,
                    currency=currency,
                )
            )
            self.processor.record(
                EntityType.MAINTENANCE_TICKET,
                ticket.id,
                None,
                TicketStatus.PENDING,
                actor,
                "created",
            )
        return ticket

    async def assign_provider(
        self, ticket_id: uuid.UUID, provider_id: uuid.UUID, actor: Actor
    ) -> MaintenanceTicket:
        async with ticket_locks.hold(ticket_id):
            async with self.processor.unit_of_work():
                ticket = await self._get_locked(ticket_id)
                if not LifecyclePolicy.is_ticket_party(actor, ticket):
                    raise PermissionDeniedError("You cannot assign this ticket")
                provider = await self.provider_repo.get_id(provider_id)
                if not provider:
                    raise NotFoundError("Provider not found", provider_id=str(provider_id))
                if not provider.is_verified:
                    raise ValidationError("Only verified providers can be assigned")

                ticket.assigned_provider_id = provider.id
                self._move(
                    ticket,
                    TicketStatus.ASSIGNED,
                    actor,
                    f"assigned to {provider.business_name}",
                )
        return ticket

    async def start_work(self, ticket_id: uuid.UUID, actor: Actor) -> MaintenanceTicket:
        async with ticket_locks.hold(ticket_id):
            async with self.processor.unit_of_work():
                ticket = await self._get_locked(ticket_id)
                provider = (
                    await self.provider_repo.get_id(ticket.assigned_provider_id)
                    if ticket.assigned_provider_id
                    else None
                )
                if not (actor.is_admin or (provider and provider.user_id == actor.id)):
                    raise PermissionDeniedError(
                        "Only the assigned provider can start work"
                    )
                self._move(ticket, TicketStatus.IN_PROGRESS, actor)
        return ticket

    async def fund(
        self, ticket_id: uuid.UUID, actor: Actor, data: PaymentInstrumentIn
    ) -> Payment:
        """Capture the ticket's escrow amount from the payer."""
        async with ticket_locks.hold(ticket_id):
            async with self.processor.unit_of_work():
                ticket = await self._get_locked(ticket_id)
                if not LifecyclePolicy.can_fund_escrow(actor, ticket):
                    raise PermissionDeniedError("Only the payer can fund this escrow")
                if ticket.status in {TicketStatus.COMPLETED, TicketStatus.REJECTED}:
                    raise IllegalTransitionError(
                        "escrow",
                        EscrowState.NONE,
                        EscrowState.HELD,
                        detail=f"Cannot fund a {ticket.status.value} ticket",
                    )

                payment = await self.payment_repo.find_ticket_escrow(ticket.id)
                if payment and payment.status != PaymentStatus.PENDING:
                    raise ConflictError(
                        "Ticket already has an escrow payment in flight or held",
                        payment_id=str(payment.id),
                    )
                if payment is None:
                    instrument = await self.methods.resolve_instrument(actor, data)
                    payment = await self.processor.create_payment(
                        type=PaymentType.DEPOSIT,
                        method=data.payment_method,
                        amount=quantize(ticket.escrow_amount, ticket.currency),
                        currency=ticket.currency,
                        actor=actor,
                        instrument=instrument,
                        user_id=ticket.payer_id,
                        property_id=ticket.property_id,
                        maintenance_ticket_id=ticket.id,
                        description=f"Escrow for {ticket.title}",
                        is_escrow=True,
                    )
                    ticket.escrow_payment_id = payment.id

            payment = await self.processor.submit(payment, actor)
        return payment

    async def complete_ticket(
        self, ticket_id: uuid.UUID, actor: Actor
    ) -> MaintenanceTicket:
        """Mark the work done and release a held escrow to the provider."""
        async with ticket_locks.hold(ticket_id):
            async with self.processor.unit_of_work():
                ticket = await self._get_locked(ticket_id)
                if not LifecyclePolicy.is_ticket_party(actor, ticket):
                    raise PermissionDeniedError("You cannot complete this ticket")
                self._move(ticket, TicketStatus.COMPLETED, actor)
            await self._settle(
                ticket_id, actor, EscrowState.RELEASED, None, required=False
            )
        await self.processor.run_deferred()
        return ticket

    async def reject_ticket(
        self, ticket_id: uuid.UUID, actor: Actor, reason: str
    ) -> MaintenanceTicket:
        """Close the ticket without work and hand held funds back."""
        async with ticket_locks.hold(ticket_id):
            async with self.processor.unit_of_work():
                ticket = await self._get_locked(ticket_id)
                if not LifecyclePolicy.is_ticket_party(actor, ticket):
                    raise PermissionDeniedError("You cannot reject this ticket")
                self._move(ticket, TicketStatus.REJECTED, actor, reason)
                payment = await self.payment_repo.find_ticket_escrow(ticket.id)
                if payment and payment.status == PaymentStatus.PENDING:
                    await self.processor.mark_cancelled(payment, actor, reason)
            await self._settle(
                ticket_id, actor, EscrowState.RETURNED, reason, required=False
            )
        await self.processor.run_deferred()
        return ticket

    async def release(self, ticket_id: uuid.UUID, actor: Actor) -> Payment:
        async with ticket_locks.hold(ticket_id):
            payment = await self._settle(ticket_id, actor, EscrowState.RELEASED, None)
        await self.processor.run_deferred()
        return payment

    async def return_funds(
        self, ticket_id: uuid.UUID, actor: Actor, reason: str
    ) -> Payment:
        async with ticket_locks.hold(ticket_id):
            payment = await self._settle(ticket_id, actor, EscrowState.RETURNED, reason)
        await self.processor.run_deferred()
        return payment

    async def resolve_dispute(
        self,
        ticket_id: uuid.UUID,
        resolution: DisputeResolution,
        reason: str,
        actor: Actor,
    ) -> MaintenanceTicket:
        if not LifecyclePolicy.can_resolve_dispute(actor):
            raise PermissionDeniedError("Only admins can resolve disputes")

        target = (
            TicketStatus.COMPLETED
            if resolution == DisputeResolution.RELEASE
            else TicketStatus.REJECTED
        )
        escrow_target = (
            EscrowState.RELEASED
            if resolution == DisputeResolution.RELEASE
            else EscrowState.RETURNED
        )

        async with ticket_locks.hold(ticket_id):
            async with self.processor.unit_of_work():
                ticket = await self._get_locked(ticket_id)
                ticket.dispute_reason = reason
                # a closed ticket keeps its status, only the money moves
                if ticket.status not in {TicketStatus.COMPLETED, TicketStatus.REJECTED}:
                    self._move(ticket, target, actor, f"dispute: {reason}")
            await self._settle(
                ticket_id, actor, escrow_target, reason, required=False
            )
        await self.processor.run_deferred()
        return ticket

    async def _settle(
        self,
        ticket_id: uuid.UUID,
        actor: Actor,
        target: EscrowState,
        reason: str | None,
        required: bool = True,
    ) -> Payment | None:
        """Move held funds out of escrow. The ticket lock must be held.

        With ``required=False`` a ticket whose escrow is not held is left
        alone; a charge still in flight is settled by the payment listener.
        """
        ticket = await self.ticket_repo.get_id(ticket_id)
        if not ticket:
            raise NotFoundError("Maintenance ticket not found", ticket_id=str(ticket_id))
        if not ticket.escrow_payment_id:
            if not required:
                return None
            raise IllegalTransitionError(
                "escrow", EscrowState.NONE, target, detail="Ticket has no escrow"
            )

        async with payment_locks.hold(ticket.escrow_payment_id):
            async with self.processor.unit_of_work():
                ticket = await self._get_locked(ticket_id)
                payment = await self.payment_repo.get_for_update(ticket.escrow_payment_id)
                if not required and payment.escrow_state != EscrowState.HELD:
                    return None
                self._check_settlement(ticket, payment, actor, target)
                provider = None
                if target == EscrowState.RELEASED:
                    provider = await self.provider_repo.get_id(ticket.assigned_provider_id)
                    if not provider or not provider.payout_account:
                        raise ValidationError(
                            "Assigned provider has no payout account on file"
                        )

            submission = await self._move_money(payment, provider, target)

            async with self.processor.unit_of_work():
                payment = await self.payment_repo.get_for_update(payment.id)
                payment.extra_metadata = {
                    **(payment.extra_metadata or {}),
                    "escrow_payout_ref": submission.provider_ref,
                }
                await self.processor.move_escrow(payment, target, actor, reason)
                if target == EscrowState.RELEASED:
                    await self.processor.move(
                        payment, PaymentStatus.COMPLETED, actor, "escrow released"
                    )
                else:
                    payment.refunded_amount = payment.amount
                    payment.refunded_at = utcnow()
                    payment.refund_reason = reason
                    await self.processor.move(
                        payment, PaymentStatus.REFUNDED, actor, reason or "escrow returned"
                    )

        logger.info("Escrow %s for ticket %s %s", payment.id, ticket_id, target.value)
        return payment

    @staticmethod
    def _check_settlement(ticket, payment, actor, target):
        if payment is None or payment.escrow_state != EscrowState.HELD:
            raise IllegalTransitionError(
                "escrow",
                payment.escrow_state if payment else EscrowState.NONE,
                target,
            )
        if not LifecyclePolicy.can_move_escrow(actor, ticket):
            raise PermissionDeniedError("You cannot move this escrow")
        if target == EscrowState.RELEASED and ticket.status != TicketStatus.COMPLETED:
            raise IllegalTransitionError(
                "escrow",
                payment.escrow_state,
                target,
                detail="Escrow is released only once the ticket is completed",
            )
        if (
            target == EscrowState.RETURNED
            and ticket.status != TicketStatus.REJECTED
            and not actor.is_admin
        ):
            raise IllegalTransitionError(
                "escrow",
                payment.escrow_state,
                target,
                detail="Escrow is returned only for rejected tickets or by an admin",
            )

    async def _move_money(self, payment: Payment, provider, target: EscrowState):
        try:
            if target == EscrowState.RELEASED:
                gateway = self.processor.gateways.get(
                    provider.payout_method or payment.payment_method
                )
                return await gateway.disburse(
                    amount=quantize(payment.amount, payment.currency),
                    currency=payment.currency,
                    account=provider.payout_account,
                    bank_code=provider.payout_bank_code,
                    internal_ref=reference_generate.payout_reference(payment.id),
                    narration=payment.description or "Maintenance escrow release",
                )
            gateway = self.processor.gateways.get(payment.payment_method)
            return await gateway.refund(
                amount=quantize(payment.amount, payment.currency),
                currency=payment.currency,
                original_provider_ref=payment.external_ref,
                instrument=payment.instrument or {},
                internal_ref=reference_generate.payout_reference(payment.id, "RETURN"),
            )
        except (ProviderFailure, ProviderTimeoutError) as e:
            logger.error(
                "Escrow %s could not be %s, funds stay held: %s",
                payment.id,
                target.value,
                e.detail,
            )
            raise

    async def _on_payment_event(self, payment: Payment, previous):
        if not payment.is_escrow or payment.maintenance_ticket_id is None:
            return
        if payment.status == PaymentStatus.FAILED:
            logger.info(
                "Escrow funding %s for ticket %s failed: %s",
                payment.id,
                payment.maintenance_ticket_id,
                payment.failure_reason,
            )
            return
        if payment.escrow_state != EscrowState.HELD:
            return

        ticket = await self.ticket_repo.get_for_update(payment.maintenance_ticket_id)
        if ticket.status == TicketStatus.REJECTED:
            self.processor.defer(
                partial(
                    self.return_funds,
                    ticket.id,
                    SYSTEM_ACTOR,
                    "ticket rejected before funds were captured",
                )
            )
        elif ticket.status == TicketStatus.COMPLETED:
            self.processor.defer(partial(self.release, ticket.id, SYSTEM_ACTOR))
