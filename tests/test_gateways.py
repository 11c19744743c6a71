import json
from decimal import Decimal

import httpx
import pytest

from core.errors import ProviderFailure, ProviderTimeoutError
from fintechs.cash_desk import CashDeskGateway
from fintechs.flutterwave import FlutterwaveClient
from fintechs.mtn_momo import MtnMomoClient, to_msisdn
from models.enums import PaymentOutcome


class Recorder:
    def __init__(self, status_code=202, body=None):
        self.status_code = status_code
        self.body = body
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.body is None:
            return httpx.Response(self.status_code)
        return httpx.Response(self.status_code, json=self.body)


def _momo(recorder):
    return MtnMomoClient(transport=httpx.MockTransport(recorder))


async def _charge(client, msisdn="+256772123456"):
    return await client.submit(
        amount=Decimal("20000"),
        currency="UGX",
        instrument={"msisdn": msisdn},
        internal_ref="PMT-abc-123",
        description="Viewing fee",
    )


class TestMtnMomo:
    def test_msisdn_formats(self):
        assert to_msisdn("+256772123456") == "256772123456"
        assert to_msisdn("0772123456") == "256772123456"
        assert to_msisdn("772123456") == "256772123456"

    async def test_request_to_pay(self):
        recorder = Recorder(202)

        submission = await _charge(_momo(recorder))

        (request,) = recorder.requests
        assert request.method == "POST"
        assert request.url.path == "/collection/v1_0/requesttopay"
        assert request.headers["X-Reference-Id"] == submission.provider_ref
        body = json.loads(request.content)
        assert body["amount"] == "20000"
        assert body["externalId"] == "PMT-abc-123"
        assert body["payer"] == {"partyIdType": "MSISDN", "partyId": "256772123456"}

    async def test_client_error_is_a_decline(self):
        recorder = Recorder(400, {"message": "PAYER_NOT_FOUND"})

        with pytest.raises(ProviderFailure) as exc:
            await _charge(_momo(recorder))
        assert "PAYER_NOT_FOUND" in exc.value.detail

    async def test_server_error_leaves_outcome_unknown(self):
        with pytest.raises(ProviderTimeoutError):
            await _charge(_momo(Recorder(503)))

    async def test_transport_error_leaves_outcome_unknown(self):
        def broken(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = MtnMomoClient(transport=httpx.MockTransport(broken))

        with pytest.raises(ProviderTimeoutError):
            await _charge(client)

    async def test_repeated_outages_open_the_circuit(self):
        recorder = Recorder(500)
        client = _momo(recorder)
        for _ in range(5):
            with pytest.raises(ProviderTimeoutError):
                await _charge(client)

        with pytest.raises(ProviderFailure):
            await _charge(client)
        assert len(recorder.requests) == 5

    async def test_missing_phone(self):
        recorder = Recorder(202)
        with pytest.raises(ProviderFailure):
            await _momo(recorder).submit(
                amount=Decimal("20000"),
                currency="UGX",
                instrument={},
                internal_ref="PMT-abc-123",
            )
        assert recorder.requests == []

    @pytest.mark.parametrize(
        "reported, outcome",
        [
            ("SUCCESSFUL", PaymentOutcome.SUCCESS),
            ("FAILED", PaymentOutcome.FAILED),
            ("PENDING", None),
        ],
    )
    async def test_status_query(self, reported, outcome):
        recorder = Recorder(200, {"status": reported, "reason": "NOT_ENOUGH_FUNDS"})

        status = await _momo(recorder).query_status(
            internal_ref="PMT-abc-123", provider_ref="ref-1"
        )

        assert status.outcome == outcome
        assert recorder.requests[0].url.path == "/collection/v1_0/requesttopay/ref-1"

    async def test_payout_status_uses_disbursement_api(self):
        recorder = Recorder(200, {"status": "SUCCESSFUL"})

        await _momo(recorder).query_status(
            internal_ref="PAYOUT-1", provider_ref="ref-2", payout=True
        )

        assert recorder.requests[0].url.path == "/disbursement/v1_0/transfer/ref-2"

    async def test_unsubmitted_status_is_unknown(self):
        recorder = Recorder(200, {})

        status = await _momo(recorder).query_status(
            internal_ref="PMT-abc-123", provider_ref=None
        )

        assert status.outcome is None
        assert recorder.requests == []


class TestFlutterwave:
    async def test_tokenized_card_charge(self):
        recorder = Recorder(
            200,
            {"status": "success", "data": {"status": "successful", "flw_ref": "FLW-1"}},
        )
        client = FlutterwaveClient(transport=httpx.MockTransport(recorder))

        submission = await client.submit(
            amount=Decimal("12.50"),
            currency="USD",
            instrument={"token": "tok_1", "email": "jane@example.com"},
            internal_ref="PMT-def-456",
        )

        assert submission.provider_ref == "FLW-1"
        assert recorder.requests[0].url.path.endswith("/tokenized-charges")
        assert json.loads(recorder.requests[0].content)["amount"] == "12.50"

    async def test_failed_charge_is_a_decline(self):
        recorder = Recorder(
            200,
            {
                "status": "success",
                "data": {"status": "failed", "processor_response": "Do not honour"},
            },
        )
        client = FlutterwaveClient(transport=httpx.MockTransport(recorder))

        with pytest.raises(ProviderFailure):
            await client.submit(
                amount=Decimal("12.50"),
                currency="USD",
                instrument={"token": "tok_1"},
                internal_ref="PMT-def-456",
            )


class TestCashDesk:
    async def test_nothing_goes_over_the_wire(self):
        gateway = CashDeskGateway()

        submission = await gateway.submit(
            amount=Decimal("5000"),
            currency="UGX",
            instrument={},
            internal_ref="PMT-cash-1",
        )
        status = await gateway.query_status(
            internal_ref="PMT-cash-1", provider_ref=submission.provider_ref
        )

        assert submission.provider_ref == "CASH-PMT-cash-1"
        assert status.outcome is None
