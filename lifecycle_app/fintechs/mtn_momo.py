import uuid
from decimal import Decimal

from core.errors import ProviderFailure
from core.money import amount_str
from core.settings import settings
from models.enums import PaymentOutcome

from .base import PaymentGateway, ProviderStatus, ProviderSubmission


def to_msisdn(phone: str) -> str:
    digits = phone.lstrip("+")
    if digits.startswith("0"):
        return "256" + digits[1:]
    if len(digits) == 9:
        return "256" + digits
    return digits


class MtnMomoClient(PaymentGateway):
    """MTN Mobile Money collection and disbursement APIs."""

    name = "mtn_momo"

    def __init__(self, transport=None):
        super().__init__(transport)
        self.base_url = settings.MTN_MOMO_BASE_URL
        self.subscription_key = settings.MTN_MOMO_SUBSCRIPTION_KEY
        self.api_token = settings.MTN_MOMO_API_TOKEN
        self.target_environment = settings.MTN_MOMO_TARGET_ENVIRONMENT

    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Ocp-Apim-Subscription-Key": self.subscription_key or "",
            "X-Target-Environment": self.target_environment,
            "Content-Type": "application/json",
        }

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
            raise ProviderFailure("MTN MoMo requires a payer phone number")

        # MoMo identifies the request by the reference id we send.
        reference_id = str(uuid.uuid4())
        payload = {
            "amount": amount_str(amount, currency),
            "currency": currency,
            "externalId": internal_ref,
            "payer": {"partyIdType": "MSISDN", "partyId": to_msisdn(msisdn)},
            "payerMessage": description or "Marketplace payment",
            "payeeNote": internal_ref,
        }
        await self._request(
            "POST",
            "/collection/v1_0/requesttopay",
            json=payload,
            headers={"X-Reference-Id": reference_id},
        )
        return ProviderSubmission(provider_ref=reference_id, raw=payload)

    async def query_status(
        self, *, internal_ref: str, provider_ref: str | None, payout: bool = False
    ) -> ProviderStatus:
        if not provider_ref:
            return ProviderStatus(outcome=None)

        path = (
            f"/disbursement/v1_0/transfer/{provider_ref}"
            if payout
            else f"/collection/v1_0/requesttopay/{provider_ref}"
        )
        res = await self._request("GET", path)
        data = self._json(res)
        status = str(data.get("status", "")).upper()

        if status == "SUCCESSFUL":
            return ProviderStatus(
                outcome=PaymentOutcome.SUCCESS, provider_ref=provider_ref
            )
        if status in {"FAILED", "REJECTED", "TIMEOUT"}:
            return ProviderStatus(
                outcome=PaymentOutcome.FAILED,
                provider_ref=provider_ref,
                failure_reason=str(data.get("reason") or status.lower()),
            )
        return ProviderStatus(outcome=None, provider_ref=provider_ref)

    async def _transfer(
        self, *, amount: Decimal, currency: str, msisdn: str, internal_ref: str, note: str
    ) -> ProviderSubmission:
        reference_id = str(uuid.uuid4())
        payload = {
            "amount": amount_str(amount, currency),
            "currency": currency,
            "externalId": internal_ref,
            "payee": {"partyIdType": "MSISDN", "partyId": to_msisdn(msisdn)},
            "payerMessage": note,
            "payeeNote": note,
        }
        await self._request(
            "POST",
            "/disbursement/v1_0/transfer",
            json=payload,
            headers={"X-Reference-Id": reference_id},
        )
        return ProviderSubmission(provider_ref=reference_id, raw=payload)

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
            raise ProviderFailure("MTN MoMo refund requires the payer phone number")
        return await self._transfer(
            amount=amount,
            currency=currency,
            msisdn=msisdn,
            internal_ref=internal_ref,
            note=f"Refund {original_provider_ref or internal_ref}",
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
        return await self._transfer(
            amount=amount,
            currency=currency,
            msisdn=account,
            internal_ref=internal_ref,
            note=narration,
        )
