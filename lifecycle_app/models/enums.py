from enum import Enum


class ActorRole(str, Enum):
    CLIENT = "client"
    OWNER = "owner"
    PROVIDER = "provider"
    ADMIN = "admin"
    SYSTEM = "system"


class BookingKind(str, Enum):
    VIEWING = "viewing"
    INQUIRY = "inquiry"
    BOOKING = "booking"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    REJECTED = "rejected"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentType(str, Enum):
    BOOKING = "booking"
    RENT = "rent"
    DEPOSIT = "deposit"
    VIEWING = "viewing"
    SERVICE_FEE = "service_fee"
    COMMISSION = "commission"
    REFUND = "refund"


class PaymentMethodType(str, Enum):
    MTN_MOMO = "mtn_momo"
    AIRTEL_MONEY = "airtel_money"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"


MOBILE_MONEY_METHODS = {PaymentMethodType.MTN_MOMO, PaymentMethodType.AIRTEL_MONEY}


class PaymentOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class EscrowState(str, Enum):
    NONE = "none"
    HELD = "held"
    RELEASED = "released"
    RETURNED = "returned"


class TicketStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"


class VerificationRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class EntityType(str, Enum):
    BOOKING = "booking"
    PAYMENT = "payment"
    ESCROW = "escrow"
    MAINTENANCE_TICKET = "maintenance_ticket"
    VERIFICATION_REQUEST = "verification_request"


class CallbackResult(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    CONFLICT = "conflict"
    UNKNOWN = "unknown"


class DisputeResolution(str, Enum):
    RELEASE = "release"
    RETURN = "return"


BOOKING_TERMINAL = {
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.REJECTED,
}

PAYMENT_TERMINAL = {
    PaymentStatus.FAILED,
    PaymentStatus.REFUNDED,
    PaymentStatus.CANCELLED,
}

# Statuses that count towards the one-active-payment-per-booking rule.
ACTIVE_PAYMENT_STATUSES = {
    PaymentStatus.PENDING,
    PaymentStatus.PROCESSING,
    PaymentStatus.COMPLETED,
}
