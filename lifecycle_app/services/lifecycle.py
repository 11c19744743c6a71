from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.get_db import get_db_async
from core.get_provider import GatewayResolver

from .booking_service import BookingService
from .escrow_service import EscrowService
from .notification_service import NotificationService, Publisher
from .payment_method_service import PaymentMethodService
from .payment_processor import PaymentProcessor
from .provider_verification_service import ProviderVerificationService


class Lifecycle:
    """Per-session wiring of the services around one payment processor.

    Bookings and escrow both listen to the processor, so a provider callback
    handled through ``lifecycle.processor`` updates whichever entity the
    payment belongs to.
    """

    def __init__(
        self,
        db,
        gateways: GatewayResolver | None = None,
        publisher: Publisher | None = None,
    ):
        self.db = db
        self.notifier = NotificationService(publisher)
        self.processor = PaymentProcessor(db, gateways, self.notifier)
        self.bookings = BookingService(db, self.processor)
        self.escrow = EscrowService(db, self.processor)
        self.methods = PaymentMethodService(db)
        self.verification = ProviderVerificationService(db, self.notifier)


async def get_lifecycle(db: AsyncSession = Depends(get_db_async)) -> Lifecycle:
    return Lifecycle(db)
