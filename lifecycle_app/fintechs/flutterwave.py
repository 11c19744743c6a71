from decimal import Decimal

from core.errors import ProviderFailure
from core.money import amount_str
from core.settings import settings
from models.enums import PaymentOutcome

from .base import PaymentGateway, ProviderStatus, ProviderSubmission


class FlutterwaveClient(PaymentGateway):
    """Card (tokenized) and bank-transfer collections, refunds and transfers."""

    name = "flutterwave"

    def __init__(self, transport=None):
        super().__init__(transport)
        self.base_url = settings.FLUTTERWAVE_BASE_URL
        self.secret = settings.FLUTTERWAVE_SECRET_KEY
        self.redirect_url = settings.REDIRECT_URL

    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _ensure_success(data: dict):
        if data.get("status") != "success":
            raise ProviderFailure(
                f"flutterwave declined: {data.get('message', 'unknown reason')}",
                provider="flutterwave",
            )

    async def submit(
        self,
        *,
        amount: Decimal,
        currency: str,
        instrument: dict,
        internal_ref: str,
        description: str | None = None,
    ) -> ProviderSubmission:
        email = instrument.get("email")
        token = instrument.get("token")

        if token:
            payload = {
                "token": token,
                "email": email,
                "currency": currency,
                "amount": amount_str(amount, currency),
                "tx_ref": internal_ref,
                "narration": description or "Marketplace payment",
            }
            res = await self._request("POST", "/tokenized-charges", json=payload)
        else:
            payload = {
                "tx_ref": internal_ref,
                "amount": amount_str(amount, currency),
                "currency": currency,
                "email": email,
                "narration": description or "Marketplace payment",
                "is_permanent": False,
            }
            res = await self._request(
                "POST", "/charges", params={"type": "bank_transfer"}, json=payload
            )

        data = self._json(res)
        self._ensure_success(data)

        tx = data.get("data") or {}
        if str(tx.get("status", "")).lower() == "failed":
            raise ProviderFailure(
                f"flutterwave declined: {tx.get('processor_response', 'charge failed')}",
                provider=self.name,
            )

        provider_ref = str(tx.get("flw_ref") or tx.get("id") or internal_ref)
        return ProviderSubmission(provider_ref=provider_ref, raw=data)

    async def query_status(
        self, *, internal_ref: str, provider_ref: str | None, payout: bool = False
    ) -> ProviderStatus:
        if payout:
            # refunds and transfers are confirmed by webhook only
            return ProviderStatus(outcome=None, provider_ref=provider_ref)

        res = await self._request(
            "GET",
            "/transactions/verify_by_reference",
            params={"tx_ref": internal_ref},
        )
        payload = self._json(res)
        if payload.get("status") != "success":
            return ProviderStatus(outcome=None, provider_ref=provider_ref)

        tx = payload.get("data") or {}
        status = str(tx.get("status", "")).lower()
        ref = str(tx.get("flw_ref") or provider_ref or "")

        if status == "successful":
            return ProviderStatus(outcome=PaymentOutcome.SUCCESS, provider_ref=ref)
        if status == "failed":
            return ProviderStatus(
                outcome=PaymentOutcome.FAILED,
                provider_ref=ref,
                failure_reason=tx.get("processor_response") or "charge failed",
            )
        return ProviderStatus(outcome=None, provider_ref=ref)

    async def refund(
        self,
        *,
        amount: Decimal,
        currency: str,
        original_provider_ref: str | None,
        instrument: dict,
        internal_ref: str,
    ) -> ProviderSubmission:
        if not original_provider_ref:
            raise ProviderFailure("Flutterwave refund needs the original reference")

        res = await self._request(
            "POST",
            f"/transactions/{original_provider_ref}/refund",
            json={"amount": amount_str(amount, currency)},
        )
        data = self._json(res)
        self._ensure_success(data)
        tx = data.get("data") or {}
        return ProviderSubmission(
            provider_ref=str(tx.get("id") or internal_ref), raw=data
        )

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
        payload = {
            "account_bank": bank_code or "MPS",
            "account_number": account,
            "amount": amount_str(amount, currency),
            "currency": currency,
            "debit_currency": currency,
            "narration": narration,
            "reference": internal_ref,
        }
        res = await self._request("POST", "/transfers", json=payload)
        data = self._json(res)
        self._ensure_success(data)
        tx = data.get("data") or {}
        return ProviderSubmission(
            provider_ref=str(tx.get("reference") or tx.get("id") or internal_ref),
            raw=data,
        )
