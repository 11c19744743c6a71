import hashlib
import hmac

from core.get_provider import callback_secret
from models.enums import PaymentMethodType


class FintechsVerifySignature:

    @staticmethod
    def sign(secret: str, body: bytes) -> str:
        return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()

    @staticmethod
    def verify_callback_signature(
        provider: PaymentMethodType, signature: str | None, body: bytes
    ) -> bool:

        if not signature:
            return False

        secret = callback_secret(provider)
        if not secret:
            return False

        expected = FintechsVerifySignature.sign(secret, body)

        return hmac.compare_digest(expected, signature.strip().lower())
