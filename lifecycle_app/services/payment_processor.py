import asyncio
import logging
import uuid
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from core.errors import (
    ConflictError,
    IllegalTransitionError,
    LifecycleError,
    MoneyIntegrityError,
    NotFoundError,
    PermissionDeniedError,
    ProviderFailure,
    ProviderTimeoutError,
    StaleStateError,
    ValidationError,
)
from core.get_provider import GatewayResolver
from core.keyed_lock import payment_locks
from core.money import normalize_currency, quantize, to_amount
from core.settings import settings
from core.state_machine import ESCROW_EDGES, PAYMENT_EDGES, ensure_transition
from models.enums import (
    MOBILE_MONEY_METHODS,
    CallbackResult,
    EntityType,
    EscrowState,
    PaymentMethodType,
    PaymentOutcome,
    PaymentStatus,
    PaymentType,
)
from models.models import Payment, PaymentCallback
from models.utils import utcnow
from policy.lifecycle_policy import LifecyclePolicy
from repos.payment_callback_repo import PaymentCallbackRepo
from repos.payment_repo import PaymentRepo
from repos.status_history_repo import StatusHistoryRepo
from schemas.schema import SYSTEM_ACTOR, Actor
from security.security_generate import reference_generate

from .notification_service import NotificationService

logger = logging.getLogger(__name__)

PaymentListener = Callable[[Payment, Optional[PaymentStatus]], Awaitable[None]]

MOBILE_MONEY_MINIMUM = {"UGX": Decimal("500")}
CALLBACK_ATTEMPTS = 3

# Card and bank transfer both settle through Flutterwave.
PROVIDER_FAMILY = {
    PaymentMethodType.MTN_MOMO: "mtn_momo",
    PaymentMethodType.AIRTEL_MONEY: "airtel_money",
    PaymentMethodType.CARD: "flutterwave",
    PaymentMethodType.BANK_TRANSFER: "flutterwave",
    PaymentMethodType.CASH: "cash",
}


class PaymentProcessor:
    """Moves payments through pending, processing and settlement.

    Every status change runs the subscribed listeners inside the same unit of
    work, so the booking mirror and escrow bookkeeping commit together with
    the payment row. Work that needs its own locks (an automatic refund, for
    instance) is registered with ``defer`` and runs after the commit.
    """

    def __init__(
        self,
        db,
        gateways: GatewayResolver | None = None,
        notifier: NotificationService | None = None,
    ):
        self.db = db
        self.payment_repo: PaymentRepo = PaymentRepo(db)
        self.callback_repo: PaymentCallbackRepo = PaymentCallbackRepo(db)
        self.history: StatusHistoryRepo = StatusHistoryRepo(db)
        self.gateways = gateways or GatewayResolver()
        self.notifier = notifier or NotificationService()
        self._listeners: list[PaymentListener] = []
        self._deferred: list[Callable[[], Awaitable[None]]] = []

    def subscribe(self, listener: PaymentListener):
        self._listeners.append(listener)

    def defer(self, action: Callable[[], Awaitable[None]]):
        self._deferred.append(action)

    @asynccontextmanager
    async def unit_of_work(self):
        """Commit on success, roll back and drop queued events on error.

        Events queued during the block are published only after the commit.
        """
        try:
            yield
            await self.payment_repo.db_commit()
        except Exception:
            await self.payment_repo.rollback()
            self.notifier.discard()
            self._deferred.clear()
            raise
        await self.notifier.flush()

    async def run_deferred(self):
        deferred, self._deferred = self._deferred, []
        for action in deferred:
            try:
                await action()
            except LifecycleError as e:
                logger.error(
                    "Follow-up action %s failed: %s",
                    getattr(action, "__name__", action),
                    e.detail,
                )

    def record(self, entity_type, entity_id, previous, target, actor, reason=None):
        self.history.record(entity_type, entity_id, previous, target, actor, reason)
        self.notifier.queue(entity_type, entity_id, previous, target)

    async def _emit(self, payment: Payment, previous: Optional[PaymentStatus]):
        for listener in self._listeners:
            await listener(payment, previous)

    async def move(
        self,
        payment: Payment,
        target: PaymentStatus,
        actor: Actor = SYSTEM_ACTOR,
        reason: str | None = None,
    ):
        """Apply one payment edge inside the current unit of work."""
        previous = payment.status
        ensure_transition("payment", PAYMENT_EDGES, previous, target)

        payment.status = target
        if target == PaymentStatus.COMPLETED:
            now = utcnow()
            payment.completed_at = now
            if payment.settled_at is None:
                payment.settled_at = now
            if not payment.receipt_number:
                payment.receipt_number = reference_generate.receipt_number()
        else:
            payment.completed_at = None

        self.record(EntityType.PAYMENT, payment.id, previous, target, actor, reason)
        await self._emit(payment, previous)

    async def move_escrow(
        self,
        payment: Payment,
        target: EscrowState,
        actor: Actor = SYSTEM_ACTOR,
        reason: str | None = None,
    ):
        previous = payment.escrow_state
        ensure_transition("escrow", ESCROW_EDGES, previous, target)

        payment.escrow_state = target
        if target == EscrowState.HELD and payment.settled_at is None:
            payment.settled_at = utcnow()

        self.record(EntityType.ESCROW, payment.id, previous, target, actor, reason)
        await self._emit(payment, payment.status)

    async def create_payment(
        self,
        *,
        type: PaymentType,
        method: PaymentMethodType,
        amount,
        currency: str,
        actor: Actor,
        instrument: dict | None = None,
        user_id: uuid.UUID | None = None,
        booking_id: uuid.UUID | None = None,
        property_id: uuid.UUID | None = None,
        maintenance_ticket_id: uuid.UUID | None = None,
        parent: Payment | None = None,
        description: str | None = None,
        refund_reason: str | None = None,
        is_escrow: bool = False,
    ) -> Payment:
        """Stage a pending payment in the caller's unit of work."""
        currency = normalize_currency(currency, settings.DEFAULT_CURRENCY)
        value = to_amount(amount, currency)
        if value <= 0:
            raise ValidationError("Payment amount must be greater than zero")

        minimum = MOBILE_MONEY_MINIMUM.get(currency)
        if (
            type != PaymentType.REFUND
            and method in MOBILE_MONEY_METHODS
            and minimum is not None
            and value < minimum
        ):
            raise ValidationError(
                f"Mobile money payments must be at least {minimum} {currency}"
            )

        payment = Payment(
            id=uuid.uuid4(),
            type=type,
            status=PaymentStatus.PENDING,
            payment_method=method,
            amount=value,
            currency=currency,
            instrument=instrument or {},
            user_id=user_id,
            booking_id=booking_id,
            property_id=property_id,
            maintenance_ticket_id=maintenance_ticket_id,
            parent_payment_id=parent.id if parent else None,
            description=description,
            refund_reason=refund_reason,
            is_escrow=is_escrow,
            escrow_state=EscrowState.NONE,
        )
        await self.payment_repo.create(payment)
        self.record(
            EntityType.PAYMENT, payment.id, None, PaymentStatus.PENDING, actor, "created"
        )
        return payment

    async def get(self, payment_id: uuid.UUID, actor: Actor) -> Payment:
        payment = await self.payment_repo.get_id(payment_id)
        if not payment:
            raise NotFoundError("Payment not found", payment_id=str(payment_id))
        if not LifecyclePolicy.can_view_payment(actor, payment):
            raise PermissionDeniedError("You cannot view this payment")
        return payment

    async def list_for_user(self, actor: Actor):
        return await self.payment_repo.list_for_user(actor.id)

    async def submit(self, payment: Payment, actor: Actor = SYSTEM_ACTOR) -> Payment:
        """Hand a pending payment to its provider.

        Idempotent: anything already past pending is returned as is and the
        provider is not called again. A provider that does not answer within
        ``PROVIDER_SUBMIT_TIMEOUT_SECONDS`` leaves the payment processing for
        the callback or the reconciliation sweep to settle.
        """
        payment_id = payment.id
        async with payment_locks.hold(payment_id):
            async with self.unit_of_work():
                payment = await self.payment_repo.get_for_update(payment_id)
                if payment is None:
                    raise NotFoundError("Payment not found", payment_id=str(payment_id))
                if payment.status != PaymentStatus.PENDING:
                    logger.info(
                        "Payment %s already %s, provider not called again",
                        payment.id,
                        payment.status.value,
                    )
                    return payment

                self.gateways.get(payment.payment_method)
                if not payment.transaction_ref:
                    payment.transaction_ref = reference_generate.transaction_ref(
                        payment.id
                    )
                payment.submitted_at = utcnow()
                await self.move(
                    payment, PaymentStatus.PROCESSING, actor, "submitted to provider"
                )

        return await self._send(payment)

    async def _send(self, payment: Payment) -> Payment:
        gateway = self.gateways.get(payment.payment_method)
        try:
            if payment.type == PaymentType.REFUND:
                parent = await self.payment_repo.get_id(payment.parent_payment_id)
                call = gateway.refund(
                    amount=quantize(payment.amount, payment.currency),
                    currency=payment.currency,
                    original_provider_ref=parent.external_ref if parent else None,
                    instrument=payment.instrument or {},
                    internal_ref=payment.transaction_ref,
                )
            else:
                call = gateway.submit(
                    amount=quantize(payment.amount, payment.currency),
                    currency=payment.currency,
                    instrument=payment.instrument or {},
                    internal_ref=payment.transaction_ref,
                    description=payment.description,
                )
            submission = await asyncio.wait_for(
                call, timeout=settings.PROVIDER_SUBMIT_TIMEOUT_SECONDS
            )
        except (asyncio.TimeoutError, ProviderTimeoutError) as e:
            logger.warning(
                "Provider submit for payment %s did not complete (%s), left processing",
                payment.id,
                getattr(e, "detail", "timeout"),
            )
            return payment
        except ProviderFailure as e:
            logger.info("Provider declined payment %s: %s", payment.id, e.detail)
            await self._record_decline(payment.id, e.detail)
            raise

        return await self._store_provider_ref(payment.id, submission.provider_ref)

    async def _record_decline(self, payment_id: uuid.UUID, reason: str):
        async with payment_locks.hold(
            payment_id, wait=settings.CALLBACK_LOCK_WAIT_SECONDS
        ):
            async with self.unit_of_work():
                payment = await self.payment_repo.get_for_update(payment_id)
                if payment.status != PaymentStatus.PROCESSING:
                    logger.warning(
                        "Decline for payment %s arrived after it became %s",
                        payment_id,
                        payment.status.value,
                    )
                    return
                payment.failure_reason = reason
                await self.move(payment, PaymentStatus.FAILED, SYSTEM_ACTOR, reason)
        await self.run_deferred()

    async def _store_provider_ref(self, payment_id: uuid.UUID, provider_ref: str):
        async with payment_locks.hold(
            payment_id, wait=settings.CALLBACK_LOCK_WAIT_SECONDS
        ):
            async with self.unit_of_work():
                payment = await self.payment_repo.get_for_update(payment_id)
                if payment.external_ref is None:
                    payment.external_ref = provider_ref
                elif payment.external_ref != provider_ref:
                    logger.warning(
                        "Payment %s already carries provider ref %s, ignoring %s",
                        payment_id,
                        payment.external_ref,
                        provider_ref,
                    )
        return payment

    async def apply_callback(
        self,
        provider: PaymentMethodType,
        provider_ref: str,
        outcome: PaymentOutcome,
        *,
        internal_ref: str | None = None,
        failure_reason: str | None = None,
        metadata: dict | None = None,
    ) -> tuple[CallbackResult, Payment]:
        """Apply a provider's final word on a payment. Safe to repeat.

        A duplicate of an outcome already applied is a no-op; an outcome that
        contradicts the recorded state is logged and raised as
        ``ConflictError``.
        """
        payment = await self.payment_repo.find_by_reference(provider_ref, internal_ref)
        if payment is None:
            logger.warning(
                "Callback from %s for unknown reference %s", provider.value, provider_ref
            )
            async with self.unit_of_work():
                self.callback_repo.log(
                    PaymentCallback(
                        provider=provider,
                        provider_ref=provider_ref,
                        internal_ref=internal_ref,
                        outcome=outcome,
                        result=CallbackResult.UNKNOWN,
                        payload=metadata,
                    )
                )
            raise NotFoundError(f"No payment matches provider reference {provider_ref}")

        # A rollback expires every loaded row, so the retry loop works from ids.
        payment_id = payment.id
        lock_ids = [payment_id]
        if payment.parent_payment_id:
            lock_ids.append(payment.parent_payment_id)

        for attempt in range(1, CALLBACK_ATTEMPTS + 1):
            try:
                async with AsyncExitStack() as stack:
                    for lock_id in lock_ids:
                        await stack.enter_async_context(
                            payment_locks.hold(
                                lock_id, wait=settings.CALLBACK_LOCK_WAIT_SECONDS
                            )
                        )
                    result, payment = await self._apply_locked(
                        payment_id,
                        provider,
                        provider_ref,
                        outcome,
                        internal_ref,
                        failure_reason,
                        metadata,
                    )
                break
            except StaleStateError:
                if attempt == CALLBACK_ATTEMPTS:
                    raise
                logger.info(
                    "Callback for payment %s lost a race, retrying (%s)",
                    payment_id,
                    attempt,
                )

        await self.run_deferred()
        # Follow-up actions may have rolled back and expired the row.
        payment = await self.payment_repo.reload(payment)

        if result == CallbackResult.CONFLICT:
            raise ConflictError(
                f"Callback outcome '{outcome.value}' conflicts with payment state "
                f"'{payment.status.value}'",
                payment_id=str(payment.id),
            )
        return result, payment

    async def _apply_locked(
        self,
        payment_id: uuid.UUID,
        provider: PaymentMethodType,
        provider_ref: str,
        outcome: PaymentOutcome,
        internal_ref: str | None,
        failure_reason: str | None,
        metadata: dict | None,
    ):
        async with self.unit_of_work():
            payment = await self.payment_repo.get_for_update(payment_id)

            if PROVIDER_FAMILY[provider] != PROVIDER_FAMILY[payment.payment_method]:
                logger.error(
                    "Callback from %s for payment %s made with %s",
                    provider.value,
                    payment.id,
                    payment.payment_method.value,
                )
                result = CallbackResult.CONFLICT
            elif payment.is_escrow:
                result = await self._apply_escrow_outcome(
                    payment, provider_ref, outcome, failure_reason
                )
            else:
                result = await self._apply_outcome(
                    payment, provider_ref, outcome, failure_reason
                )

            if result == CallbackResult.APPLIED and metadata:
                payment.extra_metadata = {**(payment.extra_metadata or {}), **metadata}
            if result == CallbackResult.CONFLICT:
                logger.error(
                    "Conflicting %s callback for payment %s in state %s",
                    outcome.value,
                    payment.id,
                    payment.status.value,
                )

            self.callback_repo.log(
                PaymentCallback(
                    provider=provider,
                    provider_ref=provider_ref,
                    internal_ref=internal_ref,
                    outcome=outcome,
                    payment_id=payment.id,
                    result=result,
                    payload=metadata,
                )
            )
        return result, payment

    def _adopt_ref(self, payment: Payment, provider_ref: str):
        if payment.external_ref is None and provider_ref != payment.transaction_ref:
            payment.external_ref = provider_ref

    async def _apply_outcome(
        self,
        payment: Payment,
        provider_ref: str,
        outcome: PaymentOutcome,
        failure_reason: str | None,
    ) -> CallbackResult:
        status = payment.status

        if outcome == PaymentOutcome.SUCCESS:
            if status == PaymentStatus.PROCESSING:
                self._adopt_ref(payment, provider_ref)
                await self.move(
                    payment, PaymentStatus.COMPLETED, SYSTEM_ACTOR, "provider confirmed"
                )
                if payment.type == PaymentType.REFUND:
                    await self._apply_refund_to_parent(payment)
                return CallbackResult.APPLIED
            if status in {PaymentStatus.COMPLETED, PaymentStatus.REFUNDED}:
                return CallbackResult.DUPLICATE
            return CallbackResult.CONFLICT

        if status == PaymentStatus.PROCESSING:
            self._adopt_ref(payment, provider_ref)
            payment.failure_reason = failure_reason or "declined by provider"
            await self.move(
                payment, PaymentStatus.FAILED, SYSTEM_ACTOR, payment.failure_reason
            )
            return CallbackResult.APPLIED
        if status == PaymentStatus.FAILED:
            return CallbackResult.DUPLICATE
        return CallbackResult.CONFLICT

    async def _apply_escrow_outcome(
        self,
        payment: Payment,
        provider_ref: str,
        outcome: PaymentOutcome,
        failure_reason: str | None,
    ) -> CallbackResult:
        status, state = payment.status, payment.escrow_state

        if outcome == PaymentOutcome.SUCCESS:
            if status == PaymentStatus.PROCESSING and state == EscrowState.NONE:
                self._adopt_ref(payment, provider_ref)
                await self.move_escrow(
                    payment, EscrowState.HELD, SYSTEM_ACTOR, "funds captured"
                )
                return CallbackResult.APPLIED
            if state != EscrowState.NONE:
                return CallbackResult.DUPLICATE
            return CallbackResult.CONFLICT

        if status == PaymentStatus.PROCESSING and state == EscrowState.NONE:
            self._adopt_ref(payment, provider_ref)
            payment.failure_reason = failure_reason or "declined by provider"
            await self.move(
                payment, PaymentStatus.FAILED, SYSTEM_ACTOR, payment.failure_reason
            )
            return CallbackResult.APPLIED
        if status == PaymentStatus.FAILED:
            return CallbackResult.DUPLICATE
        return CallbackResult.CONFLICT

    async def _apply_refund_to_parent(self, refund: Payment):
        parent = await self.payment_repo.get_for_update(refund.parent_payment_id)
        total = (parent.refunded_amount or Decimal("0")) + refund.amount
        if total > parent.amount:
            logger.critical(
                "Refund %s would take payment %s to %s of %s",
                refund.id,
                parent.id,
                total,
                parent.amount,
            )
            raise MoneyIntegrityError(
                "Refunds exceed the captured amount", payment_id=str(parent.id)
            )

        parent.refunded_amount = total
        parent.refunded_at = utcnow()
        parent.refund_reason = refund.refund_reason
        await self.move(
            parent,
            PaymentStatus.REFUNDED,
            SYSTEM_ACTOR,
            refund.refund_reason or "refund settled",
        )

    async def refundable_balance(self, payment: Payment) -> tuple[Decimal, Decimal]:
        """Return ``(remaining, in_flight)`` for a settled charge."""
        in_flight = await self.payment_repo.in_flight_refund_total(payment.id)
        remaining = quantize(
            payment.amount - (payment.refunded_amount or 0) - in_flight,
            payment.currency,
        )
        return remaining, in_flight

    async def refund(
        self,
        payment_id: uuid.UUID,
        amount,
        reason: str,
        actor: Actor,
    ) -> Payment:
        if not LifecyclePolicy.can_refund(actor):
            raise PermissionDeniedError("Only admins can issue refunds directly")
        return await self.request_refund(payment_id, amount, reason, actor)

    async def request_refund(
        self,
        payment_id: uuid.UUID,
        amount,
        reason: str,
        actor: Actor,
    ) -> Payment:
        """Create a refund payment against a settled charge and submit it.

        ``amount=None`` refunds whatever has not been refunded yet. Refunds
        still in flight count against the limit.
        """
        async with payment_locks.hold(payment_id):
            async with self.unit_of_work():
                original = await self.payment_repo.get_for_update(payment_id)
                if original is None:
                    raise NotFoundError("Payment not found", payment_id=str(payment_id))
                if original.is_escrow:
                    raise IllegalTransitionError(
                        "payment",
                        original.status,
                        PaymentStatus.REFUNDED,
                        detail="Escrow funds are returned through the escrow ledger",
                    )
                if original.type == PaymentType.REFUND:
                    raise ValidationError("A refund cannot itself be refunded")
                if original.status not in {
                    PaymentStatus.COMPLETED,
                    PaymentStatus.REFUNDED,
                }:
                    raise IllegalTransitionError(
                        "payment", original.status, PaymentStatus.REFUNDED
                    )

                remaining, _ = await self.refundable_balance(original)
                value = (
                    remaining
                    if amount is None
                    else to_amount(amount, original.currency)
                )
                if value <= 0 or value > remaining:
                    logger.critical(
                        "Refund of %s rejected for payment %s, refundable balance %s",
                        value,
                        original.id,
                        remaining,
                    )
                    raise MoneyIntegrityError(
                        f"Refund of {value} exceeds the refundable balance {remaining}",
                        payment_id=str(original.id),
                    )

                refund = await self.create_payment(
                    type=PaymentType.REFUND,
                    method=original.payment_method,
                    amount=value,
                    currency=original.currency,
                    actor=actor,
                    instrument=original.instrument,
                    user_id=original.user_id,
                    booking_id=original.booking_id,
                    property_id=original.property_id,
                    maintenance_ticket_id=original.maintenance_ticket_id,
                    parent=original,
                    description=f"Refund of {original.transaction_ref}",
                    refund_reason=reason,
                )

        return await self.submit(refund, actor)

    async def mark_cancelled(
        self, payment: Payment, actor: Actor, reason: str | None = None
    ):
        """Cancel a never-submitted payment in the caller's unit of work."""
        if payment.status != PaymentStatus.PENDING:
            raise IllegalTransitionError(
                "payment", payment.status, PaymentStatus.CANCELLED
            )
        await self.move(payment, PaymentStatus.CANCELLED, actor, reason)

    async def cancel_unsubmitted(
        self, payment_id: uuid.UUID, actor: Actor, reason: str | None = None
    ) -> Payment:
        async with payment_locks.hold(payment_id):
            async with self.unit_of_work():
                payment = await self.payment_repo.get_for_update(payment_id)
                if payment is None:
                    raise NotFoundError("Payment not found", payment_id=str(payment_id))
                if not (
                    actor.is_admin or actor.is_system or payment.user_id == actor.id
                ):
                    raise PermissionDeniedError("You cannot cancel this payment")
                await self.mark_cancelled(payment, actor, reason)
        await self.run_deferred()
        return payment

    async def reconcile_stale(self, older_than: datetime | None = None) -> dict:
        """Ask providers about payments stuck in processing and apply the
        answer through the regular callback path."""
        older_than = older_than or utcnow() - timedelta(
            minutes=settings.RECONCILE_AFTER_MINUTES
        )
        summary = {"checked": 0, "applied": 0, "pending": 0, "errors": 0}

        for payment_id in await self.payment_repo.list_stale_processing(older_than):
            summary["checked"] += 1
            payment = await self.payment_repo.get_id(payment_id)
            try:
                gateway = self.gateways.get(payment.payment_method)
                status = await asyncio.wait_for(
                    gateway.query_status(
                        internal_ref=payment.transaction_ref,
                        provider_ref=payment.external_ref,
                        payout=payment.type == PaymentType.REFUND,
                    ),
                    timeout=settings.PROVIDER_SUBMIT_TIMEOUT_SECONDS,
                )
                if status is None or status.outcome is None:
                    summary["pending"] += 1
                    continue

                result, _ = await self.apply_callback(
                    payment.payment_method,
                    status.provider_ref
                    or payment.external_ref
                    or payment.transaction_ref,
                    status.outcome,
                    internal_ref=payment.transaction_ref,
                    failure_reason=status.failure_reason,
                    metadata={"source": "reconciliation"},
                )
                if result == CallbackResult.APPLIED:
                    summary["applied"] += 1
            except (asyncio.TimeoutError, LifecycleError) as e:
                summary["errors"] += 1
                logger.warning(
                    "Reconciliation of payment %s failed: %s",
                    payment_id,
                    getattr(e, "detail", "timeout"),
                )

        logger.info("Reconciliation finished: %s", summary)
        return summary
