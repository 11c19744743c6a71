import logging
import uuid

from core.errors import NotFoundError, PermissionDeniedError, ValidationError
from core.keyed_lock import verification_locks
from core.state_machine import VERIFICATION_EDGES, ensure_transition
from models.enums import EntityType, VerificationRequestStatus
from models.models import ProviderVerificationRequest
from models.utils import utcnow
from policy.lifecycle_policy import LifecyclePolicy
from repos.provider_repo import ProviderRepo
from repos.status_history_repo import StatusHistoryRepo
from repos.verification_request_repo import VerificationRequestRepo
from schemas.schema import Actor, VerificationSubmitIn

from .notification_service import NotificationService

logger = logging.getLogger(__name__)


class ProviderVerificationService:
    """KYC review for service providers.

    A provider has at most one pending request; submitting again while it is
    pending swaps its documents. Approval is the only way ``is_verified`` and
    ``is_kyc_verified`` become true.
    """

    def __init__(self, db, notifier: NotificationService | None = None):
        self.db = db
        self.repo: VerificationRequestRepo = VerificationRequestRepo(db)
        self.provider_repo: ProviderRepo = ProviderRepo(db)
        self.history: StatusHistoryRepo = StatusHistoryRepo(db)
        self.notifier = notifier or NotificationService()

    def _record(self, request, previous, target, actor, reason=None):
        self.history.record(
            EntityType.VERIFICATION_REQUEST, request.id, previous, target, actor, reason
        )
        self.notifier.queue(EntityType.VERIFICATION_REQUEST, request.id, previous, target)

    async def _commit(self):
        await self.repo.db_commit()
        await self.notifier.flush()

    async def submit(
        self, provider_id: uuid.UUID, data: VerificationSubmitIn, actor: Actor
    ) -> ProviderVerificationRequest:
        async with verification_locks.hold(f"provider:{provider_id}"):
            try:
                provider = await self.provider_repo.get_id(provider_id)
                if not provider:
                    raise NotFoundError("Provider not found", provider_id=str(provider_id))
                if not LifecyclePolicy.can_submit_verification(actor, provider):
                    raise PermissionDeniedError(
                        "You can only submit verification for your own provider profile"
                    )

                documents = data.documents()
                request = await self.repo.get_pending(provider_id)
                if request:
                    request.id_document_url = documents["id_document_url"]
                    request.business_license_url = documents["business_license_url"]
                    request.additional_documents = documents["additional_documents"]
                    request.submitted_at = utcnow()
                    logger.info(
                        "Replaced documents of pending verification %s", request.id
                    )
                else:
                    request = await self.repo.create(
                        ProviderVerificationRequest(
                            id=uuid.uuid4(),
                            provider_id=provider_id,
                            status=VerificationRequestStatus.PENDING,
                            **documents,
                        )
                    )
                    self._record(
                        request, None, VerificationRequestStatus.PENDING, actor, "submitted"
                    )
                await self._commit()
            except Exception:
                await self.repo.rollback()
                self.notifier.discard()
                raise
        return request

    async def review(
        self,
        request_id: uuid.UUID,
        decision: VerificationRequestStatus,
        reason: str | None,
        actor: Actor,
    ) -> ProviderVerificationRequest:
        if not LifecyclePolicy.can_review_verification(actor):
            raise PermissionDeniedError("Only admins can review verification requests")
        reason = (reason or "").strip() or None
        if decision == VerificationRequestStatus.REJECTED and not reason:
            raise ValidationError("A rejection needs a reason")

        async with verification_locks.hold(request_id):
            try:
                request = await self.repo.get_for_update(request_id)
                if not request:
                    raise NotFoundError(
                        "Verification request not found", request_id=str(request_id)
                    )
                previous = request.status
                ensure_transition(
                    "verification_request", VERIFICATION_EDGES, previous, decision
                )

                now = utcnow()
                request.status = decision
                request.reviewed_by = actor.id
                request.reviewed_at = now
                if decision == VerificationRequestStatus.REJECTED:
                    request.rejection_reason = reason
                else:
                    provider = await self.provider_repo.get_for_update(
                        request.provider_id
                    )
                    provider.is_verified = True
                    provider.is_kyc_verified = True
                    provider.verified_at = now

                self._record(request, previous, decision, actor, reason)
                await self._commit()
            except Exception:
                await self.repo.rollback()
                self.notifier.discard()
                raise

        logger.info("Verification %s %s by %s", request_id, decision.value, actor.id)
        return request

    async def list_for_provider(self, provider_id: uuid.UUID, actor: Actor):
        provider = await self.provider_repo.get_id(provider_id)
        if not provider:
            raise NotFoundError("Provider not found", provider_id=str(provider_id))
        if not LifecyclePolicy.can_submit_verification(actor, provider):
            raise PermissionDeniedError("You cannot view these requests")
        return await self.repo.list_for_provider(provider_id)

    async def list_pending(self, actor: Actor):
        if not LifecyclePolicy.can_review_verification(actor):
            raise PermissionDeniedError("Only admins can list pending verifications")
        return await self.repo.list_pending()
