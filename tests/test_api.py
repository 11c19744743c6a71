import json
from datetime import date, timedelta

import httpx
import jwt
import pytest

from app import app
from core.settings import settings
from fintech_verify_signature.verify_signature import FintechsVerifySignature
from models.enums import BookingStatus
from services.lifecycle import get_lifecycle
from webhooks.service_webhooks import SIGNATURE_HEADER

SECRET = "momo-callback-secret"


@pytest.fixture
async def client(lifecycle, monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET_KEY", "test-signing-key")
    monkeypatch.setattr(settings, "MTN_MOMO_CALLBACK_SECRET", SECRET)
    monkeypatch.setattr(settings, "AIRTEL_MONEY_CALLBACK_SECRET", None)
    app.dependency_overrides[get_lifecycle] = lambda: lifecycle
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def _auth(actor):
    token = jwt.encode(
        {"sub": str(actor.id), "role": actor.role.value},
        "test-signing-key",
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


def _signed(payload, secret=SECRET):
    body = json.dumps(payload).encode()
    return body, {
        SIGNATURE_HEADER: FintechsVerifySignature.sign(secret, body),
        "Content-Type": "application/json",
    }


def _viewing_json(property_id):
    return {
        "kind": "viewing",
        "property_id": str(property_id),
        "name": "Jane Nakato",
        "email": "Jane@Example.com",
        "phone": "0772123456",
        "scheduled_date": (date.today() + timedelta(days=2)).isoformat(),
        "scheduled_time": "14:00",
        "payment_amount": "20000",
    }


class TestBookingRoutes:
    async def test_guest_can_book(self, client, property_):
        res = await client.post("/v2/bookings/", json=_viewing_json(property_.id))

        assert res.status_code == 201
        body = res.json()
        assert body["status"] == "pending"
        assert body["user_id"] is None
        assert body["email"] == "jane@example.com"
        assert body["phone"] == "+256772123456"

    async def test_listing_needs_a_token(self, client):
        res = await client.get("/v2/bookings/")
        assert res.status_code == 401

    async def test_bad_token(self, client):
        res = await client.get(
            "/v2/bookings/", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert res.status_code == 401

    async def test_lifecycle_errors_are_json(self, client, property_, client_actor):
        created = await client.post(
            "/v2/bookings/",
            json=_viewing_json(property_.id),
            headers=_auth(client_actor),
        )

        res = await client.post(
            f"/v2/bookings/{created.json()['id']}/confirm",
            headers=_auth(client_actor),
        )

        assert res.status_code == 403
        assert res.json()["success"] is False
        assert res.json()["error"] == "PermissionDeniedError"
        assert res.json()["retryable"] is False

    async def test_request_validation_shape(self, client, property_):
        payload = _viewing_json(property_.id)
        payload["scheduled_time"] = "25:00"

        res = await client.post("/v2/bookings/", json=payload)

        assert res.status_code == 422
        assert res.json()["error"] == "Validation failed"


class TestProviderCallbacks:
    async def _pay(self, client, property_, actor):
        created = await client.post(
            "/v2/bookings/", json=_viewing_json(property_.id), headers=_auth(actor)
        )
        booking_id = created.json()["id"]
        res = await client.post(
            f"/v2/bookings/{booking_id}/payments",
            json={"payment_method": "mtn_momo", "phone_number": "0772123456"},
            headers=_auth(actor),
        )
        assert res.status_code == 201
        return booking_id, res.json()

    async def test_signed_success_confirms_booking(
        self, client, lifecycle, property_, client_actor
    ):
        booking_id, payment = await self._pay(client, property_, client_actor)
        assert payment["status"] == "processing"
        assert "msisdn" not in payment["instrument"]

        body, headers = _signed(
            {
                "schema_version": "1",
                "provider_ref": payment["external_ref"],
                "internal_ref": payment["transaction_ref"],
                "outcome": "success",
            }
        )
        res = await client.post("/v2/webhooks/mtn_momo", content=body, headers=headers)

        assert res.status_code == 200
        assert res.json() == {
            "received": True,
            "result": "applied",
            "payment_id": payment["id"],
        }
        booking = await client.get(
            f"/v2/bookings/{booking_id}", headers=_auth(client_actor)
        )
        assert booking.json()["status"] == BookingStatus.CONFIRMED.value

        again = await client.post(
            "/v2/webhooks/mtn_momo", content=body, headers=headers
        )
        assert again.json()["result"] == "duplicate"

    async def test_bad_signature(self, client):
        body, headers = _signed(
            {"schema_version": "1", "provider_ref": "x", "outcome": "success"},
            secret="someone-else",
        )

        res = await client.post("/v2/webhooks/mtn_momo", content=body, headers=headers)

        assert res.status_code == 401

    async def test_unsigned_provider_is_refused(self, client):
        body, headers = _signed(
            {"schema_version": "1", "provider_ref": "x", "outcome": "success"}
        )

        res = await client.post(
            "/v2/webhooks/airtel_money", content=body, headers=headers
        )

        assert res.status_code == 401

    async def test_malformed_payload(self, client):
        body, headers = _signed({"schema_version": "2", "provider_ref": "x"})

        res = await client.post("/v2/webhooks/mtn_momo", content=body, headers=headers)

        assert res.status_code == 422

    async def test_unknown_reference(self, client):
        body, headers = _signed(
            {"schema_version": "1", "provider_ref": "NOPE-1", "outcome": "failed"}
        )

        res = await client.post("/v2/webhooks/mtn_momo", content=body, headers=headers)

        assert res.status_code == 404
        assert res.json()["error"] == "NotFoundError"
