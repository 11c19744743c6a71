import logging
import uuid

from core.errors import NotFoundError, PermissionDeniedError, ValidationError
from models.enums import MOBILE_MONEY_METHODS, PaymentMethodType
from models.models import PaymentMethod
from models.utils import mask_account_number, mask_phone, normalize_phone
from repos.payment_method_repo import PaymentMethodRepo
from schemas.schema import Actor, PaymentInstrumentIn, PaymentMethodCreate

logger = logging.getLogger(__name__)


class PaymentMethodService:
    """Saved instruments. Only redacted fields are ever returned; the
    charge handle lives in ``provider_token``."""

    def __init__(self, db):
        self.db = db
        self.repo: PaymentMethodRepo = PaymentMethodRepo(db)

    async def list(self, actor: Actor):
        return await self.repo.list_for_user(actor.id)

    async def _owned(self, actor: Actor, method_id: uuid.UUID) -> PaymentMethod:
        method = await self.repo.get_id(method_id)
        if not method:
            raise NotFoundError("Payment method not found")
        if method.user_id != actor.id:
            raise PermissionDeniedError("This payment method belongs to another user")
        return method

    async def add(self, actor: Actor, data: PaymentMethodCreate) -> PaymentMethod:
        make_default = data.is_default or await self.repo.count_for_user(actor.id) == 0

        token = None
        phone = None
        if data.type in MOBILE_MONEY_METHODS:
            token = normalize_phone(data.phone_number)
            phone = mask_phone(token)
        elif data.type == PaymentMethodType.CARD:
            token = data.card_token

        try:
            if make_default:
                await self.repo.clear_default(actor.id)
            method = await self.repo.create(
                PaymentMethod(
                    user_id=actor.id,
                    type=data.type,
                    name=data.name,
                    phone_number=phone,
                    last4=data.card_last4,
                    card_brand=data.card_brand,
                    expiry_month=data.expiry_month,
                    expiry_year=data.expiry_year,
                    bank_name=data.bank_name,
                    account_number=mask_account_number(data.account_number),
                    provider_token=token,
                    is_default=make_default,
                )
            )
            await self.repo._commit_and_refresh(method)
        except Exception:
            await self.repo.rollback()
            raise

        logger.info("Saved %s payment method %s for %s", data.type.value, method.id, actor.id)
        return method

    async def set_default(self, actor: Actor, method_id: uuid.UUID) -> PaymentMethod:
        method = await self._owned(actor, method_id)
        try:
            await self.repo.clear_default(actor.id)
            method.is_default = True
            await self.repo._commit_and_refresh(method)
        except Exception:
            await self.repo.rollback()
            raise
        return method

    async def remove(self, actor: Actor, method_id: uuid.UUID) -> dict:
        method = await self._owned(actor, method_id)
        was_default = method.is_default
        try:
            await self.repo.delete(method)
            if was_default:
                remaining = await self.repo.list_for_user(actor.id)
                if remaining:
                    remaining[0].is_default = True
            await self.repo.db_commit()
        except Exception:
            await self.repo.rollback()
            raise
        return {"success": True, "message": "Payment method removed"}

    async def resolve_instrument(
        self, actor: Actor, data: PaymentInstrumentIn, email: str | None = None
    ) -> dict:
        """Build the instrument snapshot stored on a payment.

        A saved method must belong to ``actor`` and match the requested
        payment method.
        """
        if data.saved_method_id:
            method = await self._owned(actor, data.saved_method_id)
            if method.type != data.payment_method:
                raise ValidationError(
                    f"Saved method is {method.type.value}, "
                    f"not {data.payment_method.value}"
                )
            instrument = {"saved_method_id": str(method.id)}
            if method.type in MOBILE_MONEY_METHODS:
                instrument.update(
                    msisdn=method.provider_token, masked_phone=method.phone_number
                )
            elif method.type == PaymentMethodType.CARD:
                instrument.update(token=method.provider_token, last4=method.last4)
            elif method.type == PaymentMethodType.BANK_TRANSFER:
                instrument.update(
                    bank_name=method.bank_name, account_number=method.account_number
                )
        else:
            instrument = {}
            if data.payment_method in MOBILE_MONEY_METHODS:
                msisdn = normalize_phone(data.phone_number)
                instrument.update(msisdn=msisdn, masked_phone=mask_phone(msisdn))
            elif data.payment_method == PaymentMethodType.CARD:
                instrument.update(token=data.card_token, last4=data.card_last4)
            elif data.payment_method == PaymentMethodType.BANK_TRANSFER:
                instrument.update(bank_name=data.bank_name)

        if email:
            instrument["email"] = email
        return instrument
