import uuid
from typing import List

from fastapi import APIRouter, Depends
from fastapi_utils.cbv import cbv

from core.get_current_user import get_current_actor
from core.safe_handler import safe_handler
from schemas.schema import (
    Actor,
    VerificationRequestOut,
    VerificationReviewIn,
    VerificationSubmitIn,
)
from services.lifecycle import Lifecycle, get_lifecycle

router = APIRouter(tags=["Provider Verification"])


@cbv(router)
class VerificationRoutes:
    lifecycle: Lifecycle = Depends(get_lifecycle)
    actor: Actor = Depends(get_current_actor)

    @router.post(
        "/providers/{provider_id}",
        response_model=VerificationRequestOut,
        status_code=201,
    )
    @safe_handler
    async def submit(self, provider_id: uuid.UUID, data: VerificationSubmitIn):
        return await self.lifecycle.verification.submit(provider_id, data, self.actor)

    @router.get(
        "/providers/{provider_id}", response_model=List[VerificationRequestOut]
    )
    @safe_handler
    async def provider_requests(self, provider_id: uuid.UUID):
        return await self.lifecycle.verification.list_for_provider(
            provider_id, self.actor
        )

    @router.get("/pending", response_model=List[VerificationRequestOut])
    @safe_handler
    async def pending(self):
        return await self.lifecycle.verification.list_pending(self.actor)

    @router.post("/{request_id}/review", response_model=VerificationRequestOut)
    @safe_handler
    async def review(self, request_id: uuid.UUID, data: VerificationReviewIn):
        return await self.lifecycle.verification.review(
            request_id, data.decision, data.reason, self.actor
        )
