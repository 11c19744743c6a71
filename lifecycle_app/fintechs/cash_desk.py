from decimal import Decimal

from .base import PaymentGateway, ProviderStatus, ProviderSubmission


class CashDeskGateway(PaymentGateway):
    """Cash handed over at an agent desk.

    Nothing is sent over the wire: the desk confirms receipt later through
    the signed callback endpoint, so status queries stay unknown.
    """

    name = "cash"

    async def submit(
        self,
        *,
        amount: Decimal,
        currency: str,
        instrument: dict,
        internal_ref: str,
        description: str | None = None,
    ) -> ProviderSubmission:
        return ProviderSubmission(provider_ref=f"CASH-{internal_ref}")

    async def query_status(
        self, *, internal_ref: str, provider_ref: str | None, payout: bool = False
    ) -> ProviderStatus:
        return ProviderStatus(outcome=None, provider_ref=provider_ref)

    async def refund(
        self,
        *,
        amount: Decimal,
        currency: str,
        original_provider_ref: str | None,
        instrument: dict,
        internal_ref: str,
    ) -> ProviderSubmission:
        return ProviderSubmission(provider_ref=f"CASH-{internal_ref}")

    async def disburse(
        self,
        *,
        amount: Decimal,
        currency: str,
        account: str,
        bank_code: str | None,
        internal_ref: str,
        narration: str,
    ) -> ProviderSubmission:
        return ProviderSubmission(provider_ref=f"CASH-{internal_ref}")
