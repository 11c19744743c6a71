import asyncio
import re
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import inspect

from core.errors import (
    ConflictError,
    IllegalTransitionError,
    StaleStateError,
    ValidationError,
)
from core.keyed_lock import KeyedLock
from core.money import amount_str, normalize_currency, quantize, to_amount
from core.state_machine import (
    BOOKING_EDGES,
    ESCROW_EDGES,
    PAYMENT_EDGES,
    TICKET_EDGES,
    can_transition,
    check_exhaustive,
    ensure_transition,
)
from models.enums import (
    ActorRole,
    BookingStatus,
    EscrowState,
    PaymentStatus,
    TicketStatus,
)
from models.models import Booking, MaintenanceTicket, Property
from policy.lifecycle_policy import LifecyclePolicy
from schemas.schema import SYSTEM_ACTOR, Actor
from security.security_generate import reference_generate


def _actor(role=ActorRole.CLIENT):
    return Actor(id=uuid.uuid4(), role=role)


class TestMoney:
    def test_ugx_has_no_minor_unit(self):
        assert to_amount("20000", "UGX") == Decimal("20000")
        with pytest.raises(ValidationError):
            to_amount("20000.50", "UGX")

    def test_usd_keeps_cents(self):
        assert to_amount("12.5", "usd") == Decimal("12.50")
        with pytest.raises(ValidationError):
            to_amount("12.505", "USD")

    def test_floats_go_through_str(self):
        assert to_amount(0.1, "USD") == Decimal("0.10")

    @pytest.mark.parametrize("value", ["-1", "abc", None, "NaN", "Infinity"])
    def test_rejects_bad_amounts(self, value):
        with pytest.raises(ValidationError):
            to_amount(value, "UGX")

    def test_currency_codes(self):
        assert normalize_currency(" kes ") == "KES"
        assert normalize_currency(None, "UGX") == "UGX"
        with pytest.raises(ValidationError):
            normalize_currency("XYZ")

    def test_quantize_for_the_wire(self):
        assert quantize(Decimal("20000.00"), "UGX") == Decimal("20000")
        assert amount_str(Decimal("7"), "USD") == "7.00"


class TestStateMachine:
    def test_terminal_bookings_have_no_exits(self):
        for status in (
            BookingStatus.COMPLETED,
            BookingStatus.CANCELLED,
            BookingStatus.REJECTED,
        ):
            assert BOOKING_EDGES[status] == set()

    def test_confirmed_booking_cannot_be_rejected(self):
        assert not can_transition(
            BOOKING_EDGES, BookingStatus.CONFIRMED, BookingStatus.REJECTED
        )

    def test_payment_edges(self):
        assert can_transition(
            PAYMENT_EDGES, PaymentStatus.REFUNDED, PaymentStatus.REFUNDED
        )
        assert not can_transition(
            PAYMENT_EDGES, PaymentStatus.FAILED, PaymentStatus.PROCESSING
        )
        assert not can_transition(
            PAYMENT_EDGES, PaymentStatus.PENDING, PaymentStatus.COMPLETED
        )

    def test_escrow_leaves_held_once(self):
        assert ESCROW_EDGES[EscrowState.RELEASED] == set()
        assert ESCROW_EDGES[EscrowState.RETURNED] == set()
        assert not can_transition(ESCROW_EDGES, EscrowState.NONE, EscrowState.RELEASED)

    def test_ticket_can_be_reassigned(self):
        assert can_transition(TICKET_EDGES, TicketStatus.ASSIGNED, TicketStatus.ASSIGNED)

    def test_illegal_transition_names_the_edge(self):
        with pytest.raises(IllegalTransitionError) as exc:
            ensure_transition(
                "booking", BOOKING_EDGES, BookingStatus.CANCELLED, BookingStatus.PENDING
            )
        assert exc.value.status_code == 409

    def test_every_state_needs_rules(self):
        with pytest.raises(RuntimeError):
            check_exhaustive({BookingStatus.PENDING: set()}, BookingStatus)


class TestKeyedLock:
    async def test_fail_fast_while_held(self):
        locks = KeyedLock("booking")

        async with locks.hold("b1"):
            assert locks.is_held("b1")
            with pytest.raises(StaleStateError):
                async with locks.hold("b1"):
                    pass
            async with locks.hold("b2"):
                pass

        assert not locks.is_held("b1")
        assert locks._locks == {}

    async def test_waiting_times_out_as_conflict(self):
        locks = KeyedLock("payment")

        async with locks.hold("p1"):
            with pytest.raises(ConflictError):
                async with locks.hold("p1", wait=0.01):
                    pass

    async def test_waiter_gets_the_lock_after_release(self):
        locks = KeyedLock("payment")
        order = []

        async def first():
            async with locks.hold("p1"):
                order.append("first")
                await asyncio.sleep(0.01)

        async def second():
            await asyncio.sleep(0)
            async with locks.hold("p1", wait=1):
                order.append("second")

        await asyncio.gather(first(), second())

        assert order == ["first", "second"]


class TestModels:
    def test_booking_helpers_are_properties(self):
        booking = Booking(user_id=None, close_requested_status=None)

        assert booking.is_guest is True
        assert booking.is_cancellation_pending is False
        assert inspect(Booking).relationships["listing"].mapper.class_ is Property


class TestPolicy:
    def test_property_managers_decide(self):
        owner, manager = _actor(ActorRole.OWNER), _actor(ActorRole.OWNER)
        prop = Property(owner_id=owner.id, managed_by_id=manager.id, title="x")

        assert LifecyclePolicy.can_decide_booking(owner, prop)
        assert LifecyclePolicy.can_decide_booking(manager, prop)
        assert not LifecyclePolicy.can_decide_booking(_actor(), prop)
        assert LifecyclePolicy.can_decide_booking(_actor(ActorRole.ADMIN), prop)

    def test_refunds_are_admin_or_system(self):
        assert LifecyclePolicy.can_refund(SYSTEM_ACTOR)
        assert LifecyclePolicy.can_refund(_actor(ActorRole.ADMIN))
        assert not LifecyclePolicy.can_refund(_actor(ActorRole.OWNER))

    def test_escrow_parties(self):
        payer, owner = _actor(), _actor(ActorRole.OWNER)
        ticket = MaintenanceTicket(payer_id=payer.id, owner_id=owner.id, title="x")

        assert LifecyclePolicy.can_fund_escrow(payer, ticket)
        assert not LifecyclePolicy.can_fund_escrow(owner, ticket)
        assert LifecyclePolicy.can_move_escrow(owner, ticket)
        assert LifecyclePolicy.can_move_escrow(SYSTEM_ACTOR, ticket)
        assert not LifecyclePolicy.can_move_escrow(_actor(), ticket)
        assert not LifecyclePolicy.can_resolve_dispute(payer)


class TestReferences:
    def test_transaction_ref_is_unique_per_attempt(self):
        payment_id = uuid.uuid4()

        first = reference_generate.transaction_ref(payment_id)
        second = reference_generate.transaction_ref(payment_id)

        assert first != second
        assert re.fullmatch(rf"PMT-{payment_id.hex}-[0-9a-f]{{12}}", first)

    def test_payout_ref_is_stable(self):
        payment_id = uuid.uuid4()

        assert reference_generate.payout_reference(payment_id) == (
            f"PAYOUT-{payment_id.hex}"
        )
        assert reference_generate.payout_reference(payment_id, "RETURN").startswith(
            "RETURN-"
        )

    def test_receipt_number(self):
        assert re.fullmatch(r"RCP-\d{8}-\d{1,12}", reference_generate.receipt_number())
