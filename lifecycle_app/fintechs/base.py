from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

import httpx

from core.breaker import CircuitBreaker, CircuitOpenError
from core.errors import ProviderFailure, ProviderTimeoutError
from models.enums import PaymentOutcome

DEFAULT_TIMEOUT = httpx.Timeout(connect=10.0, read=20.0, write=10.0, pool=10.0)


@dataclass
class ProviderSubmission:
    """What a provider answered when a charge, refund or payout was sent."""

    provider_ref: str
    raw: dict = field(default_factory=dict)


@dataclass
class ProviderStatus:
    # ``outcome`` is None while the provider still reports the charge as pending.
    outcome: Optional[PaymentOutcome]
    provider_ref: Optional[str] = None
    failure_reason: Optional[str] = None


class PaymentGateway:
    """Common HTTP plumbing for the money-movement providers.

    Subclasses implement ``submit``, ``query_status``, ``refund`` and
    ``disburse``. A 4xx answer is a decline (``ProviderFailure``); timeouts,
    transport errors and 5xx leave the outcome unknown
    (``ProviderTimeoutError``) so the payment stays in flight.
    """

    name = "gateway"
    base_url = ""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.transport = transport
        self.breaker = CircuitBreaker(
            self.name,
            failure_threshold=5,
            base_recovery_time=15,
            excluded_exceptions=(ProviderFailure,),
        )

    def headers(self) -> dict:
        return {"Content-Type": "application/json"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=DEFAULT_TIMEOUT,
            transport=self.transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        async def handler():
            try:
                async with self._client() as client:
                    res = await client.request(
                        method,
                        path,
                        json=json,
                        params=params,
                        headers={**self.headers(), **(headers or {})},
                    )
            except httpx.TimeoutException as e:
                raise ProviderTimeoutError(
                    f"{self.name} did not answer in time", provider=self.name
                ) from e
            except httpx.TransportError as e:
                raise ProviderTimeoutError(
                    f"{self.name} unreachable: {e}", provider=self.name
                ) from e

            if res.status_code >= 500:
                raise ProviderTimeoutError(
                    f"{self.name} error {res.status_code}", provider=self.name
                )
            if res.status_code >= 400:
                raise ProviderFailure(
                    f"{self.name} declined: {self._error_message(res)}",
                    provider=self.name,
                    status=res.status_code,
                )
            return res

        try:
            return await self.breaker.call(handler)
        except CircuitOpenError as e:
            # nothing was sent, so the charge can safely be marked failed
            raise ProviderFailure(
                f"{self.name} is temporarily unavailable", provider=self.name
            ) from e

    @staticmethod
    def _error_message(res: httpx.Response) -> str:
        try:
            data = res.json()
        except ValueError:
            return res.text[:200]
        if isinstance(data, dict):
            status = data.get("status")
            if isinstance(status, dict) and status.get("message"):
                return str(status["message"])
            return str(data.get("message") or data.get("reason") or data)[:200]
        return str(data)[:200]

    @staticmethod
    def _json(res: httpx.Response) -> dict[str, Any]:
        if not res.content:
            return {}
        try:
            return res.json()
        except ValueError:
            return {}

    async def submit(
        self,
        *,
        amount: Decimal,
        currency: str,
        instrument: dict,
        internal_ref: str,
        description: str | None = None,
    ) -> ProviderSubmission:
        raise NotImplementedError

    async def query_status(
        self, *, internal_ref: str, provider_ref: str | None, payout: bool = False
    ) -> ProviderStatus:
        raise NotImplementedError

    async def refund(
        self,
        *,
        amount: Decimal,
        currency: str,
        original_provider_ref: str | None,
        instrument: dict,
        internal_ref: str,
    ) -> ProviderSubmission:
        raise NotImplementedError

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
        raise NotImplementedError
