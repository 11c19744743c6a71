import uuid

import pytest

from core.errors import (
    IllegalTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from models.enums import EntityType, VerificationRequestStatus
from repos.status_history_repo import StatusHistoryRepo
from schemas.schema import VerificationSubmitIn


def _documents(**overrides):
    data = dict(
        id_document_url="https://files.example.com/kyc/national-id.pdf",
        business_license_url="https://files.example.com/kyc/licence.pdf",
    )
    data.update(overrides)
    return VerificationSubmitIn(**data)


@pytest.fixture
async def pending_request(lifecycle, unverified_provider, admin):
    return await lifecycle.verification.submit(
        unverified_provider.id, _documents(), admin
    )


class TestSubmit:
    async def test_submission_opens_a_pending_request(
        self, lifecycle, unverified_provider, admin, session, events
    ):
        request = await lifecycle.verification.submit(
            unverified_provider.id, _documents(), admin
        )

        assert request.status == VerificationRequestStatus.PENDING
        assert request.id_document_url.endswith("national-id.pdf")
        history = await StatusHistoryRepo(session).list_for(
            EntityType.VERIFICATION_REQUEST, request.id
        )
        assert [h.to_status for h in history] == ["pending"]
        assert events.names == ["verification_request.pending"]

    async def test_resubmission_replaces_pending_documents(
        self, lifecycle, unverified_provider, pending_request, admin
    ):
        again = await lifecycle.verification.submit(
            unverified_provider.id,
            _documents(
                business_license_url=None,
                additional_documents=[
                    {
                        "name": "TIN certificate",
                        "url": "https://files.example.com/kyc/tin.pdf",
                        "type": "tax",
                    }
                ],
            ),
            admin,
        )

        assert again.id == pending_request.id
        assert again.business_license_url is None
        assert again.additional_documents[0]["name"] == "TIN certificate"
        pending = await lifecycle.verification.list_pending(admin)
        assert [r.id for r in pending] == [pending_request.id]

    async def test_strangers_cannot_submit(
        self, lifecycle, unverified_provider, client_actor
    ):
        with pytest.raises(PermissionDeniedError):
            await lifecycle.verification.submit(
                unverified_provider.id, _documents(), client_actor
            )

    async def test_unknown_provider(self, lifecycle, admin):
        with pytest.raises(NotFoundError):
            await lifecycle.verification.submit(uuid.uuid4(), _documents(), admin)


class TestReview:
    async def test_approval_verifies_the_provider(
        self, lifecycle, pending_request, unverified_provider, admin
    ):
        request = await lifecycle.verification.review(
            pending_request.id, VerificationRequestStatus.APPROVED, None, admin
        )

        assert request.status == VerificationRequestStatus.APPROVED
        assert request.reviewed_by == admin.id
        assert unverified_provider.is_verified
        assert unverified_provider.is_kyc_verified
        assert unverified_provider.verified_at is not None

    async def test_rejection_needs_a_reason(self, lifecycle, pending_request, admin):
        with pytest.raises(ValidationError):
            await lifecycle.verification.review(
                pending_request.id, VerificationRequestStatus.REJECTED, "  ", admin
            )

    async def test_rejection_leaves_provider_unverified(
        self, lifecycle, pending_request, unverified_provider, admin
    ):
        request = await lifecycle.verification.review(
            pending_request.id,
            VerificationRequestStatus.REJECTED,
            "ID photo is blurred",
            admin,
        )

        assert request.rejection_reason == "ID photo is blurred"
        assert not unverified_provider.is_verified

    async def test_review_is_final(self, lifecycle, pending_request, admin):
        await lifecycle.verification.review(
            pending_request.id, VerificationRequestStatus.APPROVED, None, admin
        )

        with pytest.raises(IllegalTransitionError):
            await lifecycle.verification.review(
                pending_request.id, VerificationRequestStatus.REJECTED, "late", admin
            )

    async def test_only_admins_review(self, lifecycle, pending_request, owner):
        with pytest.raises(PermissionDeniedError):
            await lifecycle.verification.review(
                pending_request.id, VerificationRequestStatus.APPROVED, None, owner
            )

    async def test_new_request_after_rejection(
        self, lifecycle, pending_request, unverified_provider, admin
    ):
        await lifecycle.verification.review(
            pending_request.id, VerificationRequestStatus.REJECTED, "expired", admin
        )

        fresh = await lifecycle.verification.submit(
            unverified_provider.id, _documents(), admin
        )

        assert fresh.id != pending_request.id
        history = await lifecycle.verification.list_for_provider(
            unverified_provider.id, admin
        )
        assert len(history) == 2
