from core.errors import ProviderFailure, ProviderTimeoutError
from fintechs.base import PaymentGateway, ProviderStatus, ProviderSubmission


class FakeGateway(PaymentGateway):
    """Answers every provider call from memory and records what was sent."""

    name = "fake"

    def __init__(self):
        super().__init__()
        self.submit_error = None
        self.refund_error = None
        self.disburse_error = None
        self.status = ProviderStatus(outcome=None)
        self.calls = []

    async def submit(self, *, amount, currency, instrument, internal_ref, description=None):
        self.calls.append(("submit", internal_ref, amount))
        if self.submit_error:
            raise self.submit_error
        return ProviderSubmission(provider_ref=f"EXT-{internal_ref}")

    async def query_status(self, *, internal_ref, provider_ref, payout=False):
        self.calls.append(("query_status", internal_ref, provider_ref))
        return self.status

    async def refund(
        self, *, amount, currency, original_provider_ref, instrument, internal_ref
    ):
        self.calls.append(("refund", internal_ref, amount))
        if self.refund_error:
            raise self.refund_error
        return ProviderSubmission(provider_ref=f"RFD-{internal_ref}")

    async def disburse(
        self, *, amount, currency, account, bank_code, internal_ref, narration
    ):
        self.calls.append(("disburse", internal_ref, amount))
        if self.disburse_error:
            raise self.disburse_error
        return ProviderSubmission(provider_ref=f"DSB-{internal_ref}")

    def decline(self, reason="insufficient funds"):
        self.submit_error = ProviderFailure(reason)

    def stall(self):
        self.submit_error = ProviderTimeoutError("provider did not answer")

    def called(self, kind):
        return [call for call in self.calls if call[0] == kind]


class EventRecorder:
    def __init__(self):
        self.events = []

    async def __call__(self, event_name, data):
        self.events.append((event_name, data))

    @property
    def names(self):
        return [name for name, _ in self.events]


async def settle(lifecycle, payment, outcome, **kwargs):
    """Deliver a provider callback for ``payment``'s provider reference."""
    return await lifecycle.processor.apply_callback(
        payment.payment_method,
        payment.external_ref or payment.transaction_ref,
        outcome,
        internal_ref=payment.transaction_ref,
        **kwargs,
    )
