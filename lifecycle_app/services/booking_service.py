import logging
import uuid
from contextlib import AsyncExitStack
from datetime import date
from functools import partial

from core.errors import (
    ConflictError,
    IllegalTransitionError,
    LifecycleError,
    NotFoundError,
    PermissionDeniedError,
    ProviderFailure,
    ValidationError,
)
from core.keyed_lock import booking_locks, payment_locks
from core.money import normalize_currency, quantize, to_amount
from core.settings import settings
from core.state_machine import BOOKING_EDGES, check_exhaustive, ensure_transition
from models.enums import (
    BOOKING_TERMINAL,
    BookingKind,
    BookingStatus,
    EntityType,
    PaymentStatus,
    PaymentType,
)
from models.models import Booking, Payment, Property
from models.utils import nights_between, utcnow
from policy.lifecycle_policy import LifecyclePolicy
from repos.booking_repo import BookingRepo
from repos.payment_repo import PaymentRepo
from schemas.schema import SYSTEM_ACTOR, Actor, PaymentInstrumentIn

from .payment_method_service import PaymentMethodService
from .payment_processor import PaymentProcessor

logger = logging.getLogger(__name__)


def _validate_viewing(data):
    if not (data.scheduled_date and data.scheduled_time):
        raise ValidationError("Viewing requests need scheduled_date and scheduled_time")


def _validate_inquiry(data):
    if data.offer_amount is None and not (data.message or "").strip():
        raise ValidationError("Inquiries need an offer_amount or a message")


def _validate_reservation(data):
    if data.check_in_date or data.check_out_date:
        if not (data.check_in_date and data.check_out_date):
            raise ValidationError("Stays need both check_in_date and check_out_date")
        if nights_between(data.check_in_date, data.check_out_date) < 1:
            raise ValidationError("check_out_date must be after check_in_date")
        if not data.guests or data.guests < 1:
            raise ValidationError("Stays need at least one guest")
    elif data.move_in_date or data.lease_duration:
        if not (data.move_in_date and data.lease_duration):
            raise ValidationError("Rentals need both move_in_date and lease_duration")
    else:
        raise ValidationError(
            "Bookings need check-in and check-out dates or a move-in date "
            "and lease duration"
        )


KIND_VALIDATORS = {
    BookingKind.VIEWING: _validate_viewing,
    BookingKind.INQUIRY: _validate_inquiry,
    BookingKind.BOOKING: _validate_reservation,
}

KIND_FIELDS = {
    BookingKind.VIEWING: ("scheduled_date", "scheduled_time"),
    BookingKind.INQUIRY: (
        "financing_type",
        "business_type",
        "space_requirements",
        "lease_term",
    ),
    BookingKind.BOOKING: (
        "check_in_date",
        "check_out_date",
        "guests",
        "move_in_date",
        "lease_duration",
        "occupants",
    ),
}

KIND_PAYMENT_TYPE = {
    BookingKind.VIEWING: PaymentType.VIEWING,
    BookingKind.INQUIRY: PaymentType.DEPOSIT,
    BookingKind.BOOKING: PaymentType.BOOKING,
}

check_exhaustive(KIND_VALIDATORS, BookingKind)
check_exhaustive(KIND_FIELDS, BookingKind)
check_exhaustive(KIND_PAYMENT_TYPE, BookingKind)


def payment_type_for(booking: Booking) -> PaymentType:
    if (
        booking.kind == BookingKind.BOOKING
        and booking.move_in_date
        and not booking.check_in_date
    ):
        return PaymentType.RENT
    return KIND_PAYMENT_TYPE[booking.kind]


class BookingService:
    """Booking lifecycle: pending, confirmed and the three terminal states.

    Payment outcomes reach the booking through the processor listener, in the
    same unit of work as the payment row, so ``payment_status`` never drifts
    from the payment itself.
    """

    def __init__(self, db, processor: PaymentProcessor | None = None):
        self.db = db
        self.processor = processor or PaymentProcessor(db)
        self.notifier = self.processor.notifier
        self.booking_repo: BookingRepo = BookingRepo(db)
        self.payment_repo: PaymentRepo = PaymentRepo(db)
        self.methods: PaymentMethodService = PaymentMethodService(db)
        self.processor.subscribe(self._on_payment_event)

    def _move(
        self,
        booking: Booking,
        target: BookingStatus,
        actor: Actor,
        reason: str | None = None,
    ):
        previous = booking.status
        ensure_transition("booking", BOOKING_EDGES, previous, target)

        booking.status = target
        now = utcnow()
        if target == BookingStatus.CONFIRMED:
            booking.confirmed_at = now
        if target in BOOKING_TERMINAL:
            booking.closed_at = now
            booking.close_requested_status = None
            booking.close_requested_at = None
            booking.close_reason = reason or booking.close_reason

        self.processor.record(
            EntityType.BOOKING, booking.id, previous, target, actor, reason
        )

    @staticmethod
    def _ensure_no_close_pending(booking: Booking, target: BookingStatus):
        if booking.is_cancellation_pending:
            raise IllegalTransitionError(
                "booking",
                booking.status,
                target,
                detail="Booking has a cancellation pending while money is returned",
            )

    async def _get_locked(self, booking_id: uuid.UUID) -> tuple[Booking, Property]:
        booking = await self.booking_repo.get_for_update(booking_id)
        if not booking:
            raise NotFoundError("Booking not found", booking_id=str(booking_id))
        property = await self.booking_repo.get_property(booking.property_id)
        return booking, property

    async def get_booking(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        booking = await self.booking_repo.get_id(booking_id)
        if not booking:
            raise NotFoundError("Booking not found", booking_id=str(booking_id))
        property = await self.booking_repo.get_property(booking.property_id)
        if not LifecyclePolicy.can_view_booking(actor, booking, property):
            raise PermissionDeniedError("You cannot view this booking")
        return booking

    async def list_bookings(self, actor: Actor):
        return await self.booking_repo.list_for_user(actor.id)

    async def list_payments(self, booking_id: uuid.UUID, actor: Actor):
        await self.get_booking(booking_id, actor)
        return await self.payment_repo.find_booking_payments(booking_id)

    async def create_booking(self, data, actor: Actor | None = None) -> Booking:
        kind = BookingKind(data.kind)
        KIND_VALIDATORS[kind](data)

        currency = normalize_currency(data.currency, settings.DEFAULT_CURRENCY)
        payment_amount = None
        if data.payment_amount is not None:
            payment_amount = to_amount(
                data.payment_amount, currency, field="payment_amount"
            )
            if payment_amount <= 0:
                raise ValidationError("payment_amount must be greater than zero")
        offer_amount = getattr(data, "offer_amount", None)
        if offer_amount is not None:
            offer_amount = to_amount(offer_amount, currency, field="offer_amount")

        async with self.processor.unit_of_work():
            property = await self.booking_repo.get_property(data.property_id)
            if not property:
                raise NotFoundError(
                    "Property not found", property_id=str(data.property_id)
                )

            booking = Booking(
                id=uuid.uuid4(),
                property_id=property.id,
                user_id=actor.id if actor else None,
                kind=kind,
                status=BookingStatus.PENDING,
                name=data.name,
                email=data.email,
                phone=data.phone,
                message=data.message,
                offer_amount=offer_amount,
                payment_amount=payment_amount,
                currency=currency,
                **data.model_dump(include=set(KIND_FIELDS[kind])),
            )
            await self.booking_repo.create(booking)
            self.processor.record(
                EntityType.BOOKING,
                booking.id,
                None,
                BookingStatus.PENDING,
                actor,
                "created",
            )

        logger.info("Created %s booking %s for property %s", kind.value, booking.id, property.id)
        return booking

    async def confirm(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        async with booking_locks.hold(booking_id):
            async with self.processor.unit_of_work():
                booking, property = await self._get_locked(booking_id)
                if not LifecyclePolicy.can_decide_booking(actor, property):
                    raise PermissionDeniedError(
                        "Only the property owner or an admin can confirm bookings"
                    )
                self._ensure_no_close_pending(booking, BookingStatus.CONFIRMED)
                self._move(booking, BookingStatus.CONFIRMED, actor)
        return booking

    async def complete(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        async with booking_locks.hold(booking_id):
            async with self.processor.unit_of_work():
                booking, property = await self._get_locked(booking_id)
                if not LifecyclePolicy.can_complete_booking(actor, property):
                    raise PermissionDeniedError(
                        "Only the property owner, an admin or the system can "
                        "complete bookings"
                    )
                self._ensure_no_close_pending(booking, BookingStatus.COMPLETED)
                self._move(booking, BookingStatus.COMPLETED, actor)
        return booking

    async def complete_due_bookings(self, today: date | None = None) -> int:
        """Complete confirmed stays whose check-out date has passed."""
        today = today or utcnow().date()
        completed = 0
        for booking_id in await self.booking_repo.list_due_stays(today):
            try:
                await self.complete(booking_id, SYSTEM_ACTOR)
                completed += 1
            except LifecycleError as e:
                logger.warning("Could not complete booking %s: %s", booking_id, e.detail)
        logger.info("Completed %s due bookings", completed)
        return completed

    async def initiate_payment(
        self, booking_id: uuid.UUID, actor: Actor, data: PaymentInstrumentIn
    ) -> Payment:
        async with booking_locks.hold(booking_id):
            async with self.processor.unit_of_work():
                booking, property = await self._get_locked(booking_id)
                if not LifecyclePolicy.can_pay_booking(actor, booking):
                    raise PermissionDeniedError("You cannot pay for this booking")
                if booking.status not in {
                    BookingStatus.PENDING,
                    BookingStatus.CONFIRMED,
                }:
                    raise IllegalTransitionError(
                        "booking",
                        booking.status,
                        booking.status,
                        detail=f"Cannot take payment for a {booking.status.value} booking",
                    )
                self._ensure_no_close_pending(booking, booking.status)
                if not booking.payment_amount:
                    raise ValidationError("Booking has no payment amount")

                payment = await self.payment_repo.find_active_booking_payment(
                    booking.id
                )
                if payment and payment.status != PaymentStatus.PENDING:
                    raise ConflictError(
                        f"Booking already has a {payment.status.value} payment",
                        payment_id=str(payment.id),
                    )
                instrument = await self.methods.resolve_instrument(
                    actor, data, email=booking.email
                )
                if payment and (
                    payment.payment_method != data.payment_method
                    or payment.instrument != instrument
                ):
                    logger.info(
                        "Replacing unsubmitted payment %s for booking %s",
                        payment.id,
                        booking.id,
                    )
                    await self.processor.mark_cancelled(
                        payment, actor, "replaced by a new payment request"
                    )
                    payment = None
                if payment is None:
                    payment = await self.processor.create_payment(
                        type=payment_type_for(booking),
                        method=data.payment_method,
                        amount=quantize(booking.payment_amount, booking.currency),
                        currency=booking.currency,
                        actor=actor,
                        instrument=instrument,
                        user_id=booking.user_id,
                        booking_id=booking.id,
                        property_id=booking.property_id,
                        description=f"{booking.kind.value.title()} for {property.title}",
                    )
                    booking.payment_status = payment.status

            try:
                payment = await self.processor.submit(payment, actor)
            except ProviderFailure:
                logger.info("Payment for booking %s declined", booking_id)
                raise
        return payment

    async def on_payment_settled(
        self, booking_id: uuid.UUID, outcome: PaymentStatus, payment: Payment
    ):
        """Mirror a payment outcome onto its booking in the caller's unit of
        work."""
        booking = await self.booking_repo.get_for_update(booking_id)
        if booking is None:
            logger.error("Payment %s points at missing booking %s", payment.id, booking_id)
            return

        if payment.type == PaymentType.REFUND:
            if outcome == PaymentStatus.FAILED and booking.is_cancellation_pending:
                logger.error(
                    "Refund %s for booking %s failed, cancellation withdrawn: %s",
                    payment.id,
                    booking.id,
                    payment.failure_reason,
                )
                self._clear_close(booking)
            return

        booking.payment_status = outcome

        if outcome == PaymentStatus.COMPLETED:
            if booking.is_cancellation_pending:
                self.processor.defer(
                    partial(self._refund_open_balances, booking.id, booking.close_reason)
                )
            elif booking.status in BOOKING_TERMINAL:
                reason = booking.close_reason or "booking closed while payment was in flight"
                self.processor.defer(partial(self._auto_refund, payment.id, reason))
            elif booking.status == BookingStatus.PENDING:
                self._move(
                    booking, BookingStatus.CONFIRMED, SYSTEM_ACTOR, "payment settled"
                )
        elif outcome in {PaymentStatus.FAILED, PaymentStatus.CANCELLED}:
            if booking.is_cancellation_pending:
                refundable, _ = await self._open_balances(booking.id)
                if refundable:
                    self.processor.defer(
                        partial(
                            self._refund_open_balances, booking.id, booking.close_reason
                        )
                    )
                else:
                    self._finalize_close(booking)
        elif outcome == PaymentStatus.REFUNDED:
            if booking.is_cancellation_pending:
                refundable, in_flight = await self._open_balances(booking.id)
                if not refundable and in_flight <= 0:
                    self._finalize_close(booking)

    async def _on_payment_event(self, payment: Payment, previous):
        if payment.booking_id is None or payment.is_escrow:
            return
        if payment.status == PaymentStatus.PROCESSING:
            if payment.type != PaymentType.REFUND:
                booking = await self.booking_repo.get_for_update(payment.booking_id)
                booking.payment_status = payment.status
            return
        await self.on_payment_settled(payment.booking_id, payment.status, payment)

    async def _auto_refund(self, payment_id: uuid.UUID, reason: str):
        logger.info("Refunding payment %s settled after its booking closed", payment_id)
        await self.processor.request_refund(payment_id, None, reason, SYSTEM_ACTOR)

    async def _open_balances(self, booking_id: uuid.UUID):
        """Return the settled charges on a booking that still hold money, and
        the total of its refunds not yet confirmed."""
        refundable, in_flight_total = [], 0
        for payment in await self.payment_repo.settled_booking_payments(booking_id):
            remaining, in_flight = await self.processor.refundable_balance(payment)
            if remaining > 0:
                refundable.append(payment.id)
            in_flight_total += in_flight
        return refundable, in_flight_total

    async def _refund_open_balances(self, booking_id: uuid.UUID, reason: str | None):
        refundable, _ = await self._open_balances(booking_id)
        for payment_id in refundable:
            await self._auto_refund(
                payment_id, reason or "booking closed while payment was in flight"
            )

    def _request_close(self, booking: Booking, target: BookingStatus, reason):
        booking.close_requested_status = target
        booking.close_reason = reason
        booking.close_requested_at = utcnow()
        logger.info(
            "Booking %s will become %s once its payment is resolved",
            booking.id,
            target.value,
        )

    def _clear_close(self, booking: Booking):
        booking.close_requested_status = None
        booking.close_requested_at = None
        booking.close_reason = None

    def _finalize_close(self, booking: Booking):
        self._move(
            booking,
            booking.close_requested_status,
            SYSTEM_ACTOR,
            booking.close_reason,
        )

    async def cancel(
        self, booking_id: uuid.UUID, actor: Actor, reason: str | None = None
    ) -> Booking:
        def authorize(booking, property):
            if not LifecyclePolicy.can_cancel_booking(actor, booking, property):
                raise PermissionDeniedError("You cannot cancel this booking")

        return await self._close(
            booking_id, actor, BookingStatus.CANCELLED, reason, authorize
        )

    async def reject(
        self, booking_id: uuid.UUID, actor: Actor, reason: str
    ) -> Booking:
        def authorize(booking, property):
            if not LifecyclePolicy.can_decide_booking(actor, property):
                raise PermissionDeniedError(
                    "Only the property owner or an admin can reject bookings"
                )

        return await self._close(
            booking_id, actor, BookingStatus.REJECTED, reason, authorize
        )

    async def _close(self, booking_id, actor, target, reason, authorize) -> Booking:
        """Cancel or reject, returning any money first.

        A charge still in flight leaves a close request that its callback
        resolves. Otherwise every settled charge with money left on it is
        refunded, and the booking closes once those refunds confirm. With
        nothing to return it closes at once.
        """
        refund_from = []
        async with booking_locks.hold(booking_id):
            latest = await self.payment_repo.find_latest_booking_payment(booking_id)
            lock_ids = [latest.id] if latest else []
            for settled in await self.payment_repo.settled_booking_payments(booking_id):
                if settled.id not in lock_ids:
                    lock_ids.append(settled.id)
            async with AsyncExitStack() as stack:
                for lock_id in lock_ids:
                    await stack.enter_async_context(payment_locks.hold(lock_id))
                async with self.processor.unit_of_work():
                    booking, property = await self._get_locked(booking_id)
                    authorize(booking, property)
                    self._ensure_no_close_pending(booking, target)
                    ensure_transition("booking", BOOKING_EDGES, booking.status, target)

                    payment = (
                        await self.payment_repo.get_for_update(latest.id)
                        if latest
                        else None
                    )
                    status = payment.status if payment else None

                    if status == PaymentStatus.PROCESSING:
                        self._request_close(booking, target, reason)
                    else:
                        if status == PaymentStatus.PENDING:
                            await self.processor.mark_cancelled(payment, actor, reason)
                        refund_from, in_flight = await self._open_balances(booking_id)
                        if not refund_from and in_flight > 0:
                            self._request_close(booking, target, reason)
                        elif not refund_from:
                            self._move(booking, target, actor, reason)

            if refund_from:
                booking = await self._close_after_refund(
                    booking_id, refund_from, actor, target, reason
                )

        await self.processor.run_deferred()
        return booking

    async def _close_after_refund(self, booking_id, payment_ids, actor, target, reason):
        refund_ids = []
        for payment_id in payment_ids:
            refund = await self.processor.request_refund(
                payment_id, None, reason or f"booking {target.value}", actor
            )
            refund_ids.append(refund.id)

        async with self.processor.unit_of_work():
            booking = await self.booking_repo.get_for_update(booking_id)
            for refund_id in refund_ids:
                refund = await self.payment_repo.get_for_update(refund_id)
                if refund.status == PaymentStatus.FAILED:
                    raise ProviderFailure(
                        f"Refund was declined: {refund.failure_reason}",
                        payment_id=str(refund.id),
                    )
            if booking.status == target:
                return booking

            self._ensure_no_close_pending(booking, target)
            remaining, in_flight = await self._open_balances(booking_id)
            if not remaining and in_flight <= 0:
                # refunds already settled
                self._move(booking, target, actor, reason)
            else:
                self._request_close(booking, target, reason)
        return booking
