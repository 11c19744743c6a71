from datetime import timedelta
from decimal import Decimal

import pytest

from core.errors import (
    ConflictError,
    IllegalTransitionError,
    MoneyIntegrityError,
    NotFoundError,
    PermissionDeniedError,
    StaleStateError,
    ValidationError,
)
from fintechs.base import ProviderStatus
from models.enums import (
    CallbackResult,
    PaymentMethodType,
    PaymentOutcome,
    PaymentStatus,
    PaymentType,
)
from models.utils import utcnow
from repos.payment_callback_repo import PaymentCallbackRepo

from helpers import settle


@pytest.fixture
async def paid_booking(lifecycle, viewing_request, client_actor, momo):
    booking = await lifecycle.bookings.create_booking(
        viewing_request(payment_amount=Decimal("50000")), client_actor
    )
    payment = await lifecycle.bookings.initiate_payment(booking.id, client_actor, momo)
    await settle(lifecycle, payment, PaymentOutcome.SUCCESS)
    return booking, payment


async def _staged(lifecycle, actor, amount="20000", method=PaymentMethodType.MTN_MOMO):
    async with lifecycle.processor.unit_of_work():
        payment = await lifecycle.processor.create_payment(
            type=PaymentType.SERVICE_FEE,
            method=method,
            amount=Decimal(amount),
            currency="UGX",
            actor=actor,
            user_id=actor.id,
            instrument={"msisdn": "+256772123456"},
        )
    return payment


class TestCreateAndSubmit:
    async def test_zero_amount_is_rejected(self, lifecycle, client_actor):
        with pytest.raises(ValidationError):
            await _staged(lifecycle, client_actor, amount="0")

    async def test_cash_has_no_mobile_money_minimum(self, lifecycle, client_actor):
        payment = await _staged(
            lifecycle, client_actor, amount="100", method=PaymentMethodType.CASH
        )
        assert payment.status == PaymentStatus.PENDING

    async def test_submit_is_idempotent(self, lifecycle, client_actor, gateway):
        payment = await _staged(lifecycle, client_actor)

        first = await lifecycle.processor.submit(payment, client_actor)
        second = await lifecycle.processor.submit(payment, client_actor)

        assert first.status == PaymentStatus.PROCESSING
        assert second.status == PaymentStatus.PROCESSING
        assert len(gateway.called("submit")) == 1
        assert first.transaction_ref.startswith("PMT-")
        assert first.submitted_at is not None

    async def test_timeout_leaves_payment_processing(
        self, lifecycle, client_actor, gateway
    ):
        gateway.stall()
        payment = await _staged(lifecycle, client_actor)

        payment = await lifecycle.processor.submit(payment, client_actor)

        assert payment.status == PaymentStatus.PROCESSING
        assert payment.external_ref is None

    async def test_cancel_unsubmitted(self, lifecycle, client_actor, other_client):
        payment_id = (await _staged(lifecycle, client_actor)).id

        with pytest.raises(PermissionDeniedError):
            await lifecycle.processor.cancel_unsubmitted(payment_id, other_client)

        payment = await lifecycle.processor.cancel_unsubmitted(
            payment_id, client_actor, "changed my mind"
        )
        assert payment.status == PaymentStatus.CANCELLED

        with pytest.raises(IllegalTransitionError):
            await lifecycle.processor.cancel_unsubmitted(payment_id, client_actor)

    async def test_processing_payment_cannot_be_cancelled(
        self, lifecycle, client_actor
    ):
        payment = await _staged(lifecycle, client_actor)
        await lifecycle.processor.submit(payment, client_actor)

        with pytest.raises(IllegalTransitionError):
            await lifecycle.processor.cancel_unsubmitted(payment.id, client_actor)


class TestCallbacks:
    async def test_duplicate_success_is_a_no_op(self, lifecycle, client_actor, session):
        payment = await _staged(lifecycle, client_actor)
        payment = await lifecycle.processor.submit(payment, client_actor)

        first, _ = await settle(lifecycle, payment, PaymentOutcome.SUCCESS)
        receipt = payment.receipt_number
        second, _ = await settle(lifecycle, payment, PaymentOutcome.SUCCESS)

        assert first == CallbackResult.APPLIED
        assert second == CallbackResult.DUPLICATE
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.receipt_number == receipt

        logged = await PaymentCallbackRepo(session).list_for_reference(
            payment.external_ref
        )
        assert [c.result for c in logged] == [
            CallbackResult.APPLIED,
            CallbackResult.DUPLICATE,
        ]

    async def test_failure_after_success_is_a_conflict(
        self, lifecycle, client_actor, session
    ):
        payment = await _staged(lifecycle, client_actor)
        payment = await lifecycle.processor.submit(payment, client_actor)
        await settle(lifecycle, payment, PaymentOutcome.SUCCESS)

        with pytest.raises(ConflictError):
            await settle(lifecycle, payment, PaymentOutcome.FAILED)

        assert payment.status == PaymentStatus.COMPLETED
        logged = await PaymentCallbackRepo(session).list_for_reference(
            payment.external_ref
        )
        assert logged[-1].result == CallbackResult.CONFLICT

    async def test_duplicate_failure(self, lifecycle, client_actor):
        payment = await _staged(lifecycle, client_actor)
        payment = await lifecycle.processor.submit(payment, client_actor)

        await settle(lifecycle, payment, PaymentOutcome.FAILED, failure_reason="PIN")
        result, _ = await settle(lifecycle, payment, PaymentOutcome.FAILED)

        assert result == CallbackResult.DUPLICATE
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "PIN"

    async def test_unknown_reference(self, lifecycle, session):
        with pytest.raises(NotFoundError):
            await lifecycle.processor.apply_callback(
                PaymentMethodType.MTN_MOMO, "NOPE-123", PaymentOutcome.SUCCESS
            )

        logged = await PaymentCallbackRepo(session).list_for_reference("NOPE-123")
        assert [c.result for c in logged] == [CallbackResult.UNKNOWN]

    async def test_callback_before_provider_ref_is_stored(
        self, lifecycle, client_actor, gateway
    ):
        gateway.stall()
        payment = await _staged(lifecycle, client_actor)
        payment = await lifecycle.processor.submit(payment, client_actor)

        result, payment = await lifecycle.processor.apply_callback(
            PaymentMethodType.MTN_MOMO,
            "momo-ref-778",
            PaymentOutcome.SUCCESS,
            internal_ref=payment.transaction_ref,
        )

        assert result == CallbackResult.APPLIED
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.external_ref == "momo-ref-778"

    async def test_callback_from_another_provider_conflicts(
        self, lifecycle, client_actor
    ):
        payment = await _staged(lifecycle, client_actor)
        payment = await lifecycle.processor.submit(payment, client_actor)

        with pytest.raises(ConflictError):
            await lifecycle.processor.apply_callback(
                PaymentMethodType.AIRTEL_MONEY,
                payment.external_ref,
                PaymentOutcome.SUCCESS,
            )
        assert payment.status == PaymentStatus.PROCESSING

    async def test_metadata_is_merged_on_apply(self, lifecycle, client_actor):
        payment = await _staged(lifecycle, client_actor)
        payment = await lifecycle.processor.submit(payment, client_actor)

        await settle(
            lifecycle, payment, PaymentOutcome.SUCCESS, metadata={"network": "MTN"}
        )

        assert payment.extra_metadata == {"network": "MTN"}

    async def test_callback_retried_after_losing_a_race(
        self, lifecycle, client_actor, session, monkeypatch
    ):
        payment = await _staged(lifecycle, client_actor)
        payment = await lifecycle.processor.submit(payment, client_actor)
        apply_locked = lifecycle.processor._apply_locked
        calls = []

        async def stale_once(*args):
            calls.append(args[0])
            if len(calls) == 1:
                await session.rollback()
                raise StaleStateError("row version moved")
            return await apply_locked(*args)

        monkeypatch.setattr(lifecycle.processor, "_apply_locked", stale_once)

        result, payment = await settle(lifecycle, payment, PaymentOutcome.SUCCESS)

        assert result == CallbackResult.APPLIED
        assert len(calls) == 2
        assert calls[0] == calls[1] == payment.id
        assert payment.status == PaymentStatus.COMPLETED


class TestRefunds:
    async def test_only_admins_refund_directly(
        self, lifecycle, paid_booking, client_actor
    ):
        _, payment = paid_booking
        with pytest.raises(PermissionDeniedError):
            await lifecycle.processor.refund(payment.id, None, "goodwill", client_actor)

    async def test_partial_refunds_up_to_the_captured_amount(
        self, lifecycle, paid_booking, admin
    ):
        payment_id = paid_booking[1].id

        first = await lifecycle.processor.refund(
            payment_id, Decimal("30000"), "partial", admin
        )
        first_id = first.id
        with pytest.raises(MoneyIntegrityError):
            await lifecycle.processor.refund(
                payment_id, Decimal("25000"), "too much", admin
            )

        first = await lifecycle.processor.get(first_id, admin)
        assert first.amount == Decimal("30000")
        await settle(lifecycle, first, PaymentOutcome.SUCCESS)
        payment = await lifecycle.processor.get(payment_id, admin)
        assert payment.status == PaymentStatus.REFUNDED
        assert payment.refunded_amount == Decimal("30000")

        second = await lifecycle.processor.refund(payment_id, None, "the rest", admin)
        assert second.amount == Decimal("20000")
        await settle(lifecycle, second, PaymentOutcome.SUCCESS)

        payment = await lifecycle.processor.get(payment_id, admin)
        assert payment.status == PaymentStatus.REFUNDED
        assert payment.refunded_amount == Decimal("50000")
        with pytest.raises(MoneyIntegrityError):
            await lifecycle.processor.refund(payment_id, None, "again", admin)

    async def test_refund_of_unsettled_payment(self, lifecycle, client_actor, admin):
        payment = await _staged(lifecycle, client_actor)
        await lifecycle.processor.submit(payment, client_actor)

        with pytest.raises(IllegalTransitionError):
            await lifecycle.processor.refund(payment.id, None, "early", admin)

    async def test_refund_cannot_be_refunded(self, lifecycle, paid_booking, admin):
        _, payment = paid_booking
        refund = await lifecycle.processor.refund(payment.id, None, "full", admin)
        await settle(lifecycle, refund, PaymentOutcome.SUCCESS)

        with pytest.raises(ValidationError):
            await lifecycle.processor.refund(refund.id, None, "loop", admin)

    async def test_refund_below_mobile_money_minimum_is_allowed(
        self, lifecycle, paid_booking, admin
    ):
        _, payment = paid_booking
        refund = await lifecycle.processor.refund(
            payment.id, Decimal("100"), "fee adjustment", admin
        )
        assert refund.status == PaymentStatus.PROCESSING
        assert refund.parent_payment_id == payment.id


class TestReconciliation:
    async def test_stale_payment_settles_from_provider_status(
        self, lifecycle, client_actor, gateway
    ):
        gateway.stall()
        payment = await _staged(lifecycle, client_actor)
        payment = await lifecycle.processor.submit(payment, client_actor)
        gateway.status = ProviderStatus(
            outcome=PaymentOutcome.SUCCESS, provider_ref="momo-991"
        )

        summary = await lifecycle.processor.reconcile_stale(
            older_than=utcnow() + timedelta(minutes=1)
        )

        assert summary == {"checked": 1, "applied": 1, "pending": 0, "errors": 0}
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.extra_metadata == {"source": "reconciliation"}

    async def test_still_pending_at_provider(self, lifecycle, client_actor, gateway):
        payment = await _staged(lifecycle, client_actor)
        await lifecycle.processor.submit(payment, client_actor)

        summary = await lifecycle.processor.reconcile_stale(
            older_than=utcnow() + timedelta(minutes=1)
        )

        assert summary["checked"] == 1
        assert summary["pending"] == 1
        assert payment.status == PaymentStatus.PROCESSING

    async def test_recent_payments_are_left_alone(self, lifecycle, client_actor):
        payment = await _staged(lifecycle, client_actor)
        await lifecycle.processor.submit(payment, client_actor)

        summary = await lifecycle.processor.reconcile_stale(
            older_than=utcnow() - timedelta(hours=1)
        )

        assert summary["checked"] == 0
