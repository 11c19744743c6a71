import logging

from fastapi import HTTPException, Request
from pydantic import ValidationError as PydanticValidationError

from fintech_verify_signature.verify_signature import FintechsVerifySignature
from models.enums import PaymentMethodType
from schemas.schema import CallbackAck, ProviderCallbackIn
from services.lifecycle import Lifecycle

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Provider-Signature"


class PaymentWebhooks:
    def __init__(self, request: Request, lifecycle: Lifecycle):
        self.request = request
        self.lifecycle = lifecycle
        self.verify_signature: FintechsVerifySignature = FintechsVerifySignature()

    async def provider_callback(self, provider: PaymentMethodType) -> CallbackAck:
        raw_body = await self.request.body()
        signature = self.request.headers.get(SIGNATURE_HEADER)

        if not self.verify_signature.verify_callback_signature(
            provider, signature, raw_body
        ):
            logger.warning("Rejected %s callback with a bad signature", provider.value)
            raise HTTPException(401, "Invalid signature")

        try:
            payload = ProviderCallbackIn.model_validate_json(raw_body)
        except PydanticValidationError as e:
            logger.warning("Malformed %s callback: %s", provider.value, e.errors())
            raise HTTPException(422, "Malformed callback payload")

        result, payment = await self.lifecycle.processor.apply_callback(
            provider,
            payload.provider_ref,
            payload.outcome,
            internal_ref=payload.internal_ref,
            failure_reason=payload.failure_reason,
            metadata=payload.metadata,
        )
        logger.info(
            "%s callback %s for payment %s: %s",
            provider.value,
            payload.provider_ref,
            payment.id,
            result.value,
        )
        return CallbackAck(result=result.value, payment_id=payment.id)
