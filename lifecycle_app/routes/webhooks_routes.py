from fastapi import APIRouter, Depends, Request
from fastapi_utils.cbv import cbv

from core.safe_handler import safe_handler
from models.enums import PaymentMethodType
from schemas.schema import CallbackAck
from services.lifecycle import Lifecycle, get_lifecycle
from webhooks.service_webhooks import PaymentWebhooks

router = APIRouter(tags=["Webhooks"])


@cbv(router)
class WebhookRoutes:
    @router.post("/webhooks/{provider}", response_model=CallbackAck)
    @safe_handler
    async def provider_callback(
        self,
        provider: PaymentMethodType,
        request: Request,
        lifecycle: Lifecycle = Depends(get_lifecycle),
    ):
        return await PaymentWebhooks(request, lifecycle).provider_callback(provider)
