from decimal import Decimal

from core.errors import ProviderFailure
from core.money import amount_str
from core.settings import settings
from models.enums import PaymentOutcome

from .base import PaymentGateway, ProviderStatus, ProviderSubmission


def national_number(phone: str) -> str:
    digits = phone.lstrip("+")
    if digits.startswith("256"):
        return digits[3:]
    if digits.startswith("0"):
        return digits[1:]
    return digits


class AirtelMoneyClient(PaymentGateway):
    name = "airtel_money"

    def __init__(self, transport=None):
        super().__init__(transport)
        self.base_url = settings.AIRTEL_MONEY_BASE_URL
        self.api_token = settings.AIRTEL_MONEY_API_TOKEN
        self.country = settings.AIRTEL_MONEY_COUNTRY

    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "X-Country": self.country,
            "Content-Type": "application/json",
        }

    def _transaction(self, data: dict) -> dict:
        return (data.get("data") or {}).get("transaction") or {}

    def _ensure_success(self, data: dict):
        status = data.get("status") or {}
        if status and status.get("success") is False:
            raise ProviderFailure(
                f"airtel_money declined: {status.get('message', 'unknown reason')}",
                provider=self.name,
                code=status.get("response_code"),
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
        msisdn = instrument.get("msisdn")
        if not msisdn:
            raise ProviderFailure("Airtel Money requires a payer phone number")

        payload = {
            "reference": description or "Marketplace payment",
            "subscriber": {
                "country": self.country,
                "currency": currency,
                "msisdn": national_number(msisdn),
            },
            "transaction": {
                "amount": amount_str(amount, currency),
                "country": self.country,
                "currency": currency,
                "id": internal_ref,
            },
        }
        res = await self._request(
            "POST",
            "/merchant/v1/payments/",
            json=payload,
            headers={"X-Currency": currency},
        )
        data = self._json(res)
        self._ensure_success(data)
        # Airtel keys the collection by our transaction id.
        provider_ref = str(self._transaction(data).get("id") or internal_ref)
        return ProviderSubmission(provider_ref=provider_ref, raw=data)

    async def query_status(
        self, *, internal_ref: str, provider_ref: str | None, payout: bool = False
    ) -> ProviderStatus:
        collection = "disbursements" if payout else "payments"
        res = await self._request(
            "GET", f"/standard/v1/{collection}/{provider_ref or internal_ref}"
        )
        transaction = self._transaction(self._json(res))
        status = str(transaction.get("status", "")).upper()

        if status == "TS":
            return ProviderStatus(
                outcome=PaymentOutcome.SUCCESS,
                provider_ref=str(transaction.get("id") or provider_ref),
            )
        if status in {"TF", "TE"}:
            return ProviderStatus(
                outcome=PaymentOutcome.FAILED,
                provider_ref=str(transaction.get("id") or provider_ref),
                failure_reason=transaction.get("message") or "transaction failed",
            )
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
        msisdn = instrument.get("msisdn")
        if not msisdn:
            raise ProviderFailure("Airtel Money refund requires the payer phone number")
        return await self.disburse(
            amount=amount,
            currency=currency,
            account=msisdn,
            bank_code=None,
            internal_ref=internal_ref,
            narration=f"Refund {original_provider_ref or internal_ref}",
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
            "payee": {"msisdn": national_number(account)},
            "reference": narration[:64],
            "transaction": {
                "amount": amount_str(amount, currency),
                "id": internal_ref,
            },
        }
        res = await self._request(
            "POST",
            "/standard/v1/disbursements/",
            json=payload,
            headers={"X-Currency": currency},
        )
        data = self._json(res)
        self._ensure_success(data)
        transaction = self._transaction(data)
        provider_ref = str(
            transaction.get("airtel_money_id") or transaction.get("id") or internal_ref
        )
        return ProviderSubmission(provider_ref=provider_ref, raw=data)
