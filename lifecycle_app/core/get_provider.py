from core.errors import ValidationError
from fintechs.airtel_money import AirtelMoneyClient
from fintechs.base import PaymentGateway
from fintechs.cash_desk import CashDeskGateway
from fintechs.flutterwave import FlutterwaveClient
from fintechs.mtn_momo import MtnMomoClient
from models.enums import PaymentMethodType

from .settings import settings


class GatewayResolver:
    def __init__(self, gateways: dict[PaymentMethodType, PaymentGateway] | None = None):
        if gateways is None:
            flutterwave = FlutterwaveClient()
            gateways = {
                PaymentMethodType.MTN_MOMO: MtnMomoClient(),
                PaymentMethodType.AIRTEL_MONEY: AirtelMoneyClient(),
                PaymentMethodType.CARD: flutterwave,
                PaymentMethodType.BANK_TRANSFER: flutterwave,
                PaymentMethodType.CASH: CashDeskGateway(),
            }
        self.gateways = gateways

    def get(self, method: PaymentMethodType) -> PaymentGateway:
        try:
            return self.gateways[method]
        except KeyError:
            raise ValidationError(f"No gateway configured for {method.value}") from None


def callback_secret(method: PaymentMethodType) -> str | None:
    return {
        PaymentMethodType.MTN_MOMO: settings.MTN_MOMO_CALLBACK_SECRET,
        PaymentMethodType.AIRTEL_MONEY: settings.AIRTEL_MONEY_CALLBACK_SECRET,
        PaymentMethodType.CARD: settings.FLUTTERWAVE_WEBHOOK_SECRET,
        PaymentMethodType.BANK_TRANSFER: settings.FLUTTERWAVE_WEBHOOK_SECRET,
        PaymentMethodType.CASH: settings.CASH_DESK_CALLBACK_SECRET,
    }[method]
