from enum import Enum
from typing import Mapping, Type

from models.enums import (
    BookingStatus,
    EscrowState,
    PaymentStatus,
    TicketStatus,
    VerificationRequestStatus,
)

from .errors import IllegalTransitionError

BOOKING_EDGES = {
    BookingStatus.PENDING: {
        BookingStatus.CONFIRMED,
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.REJECTED: set(),
}

PAYMENT_EDGES = {
    PaymentStatus.PENDING: {PaymentStatus.PROCESSING, PaymentStatus.CANCELLED},
    PaymentStatus.PROCESSING: {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        # held escrow handed back to the payer
        PaymentStatus.REFUNDED,
    },
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    # repeated partial refunds keep the payment in refunded
    PaymentStatus.REFUNDED: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.CANCELLED: set(),
}

ESCROW_EDGES = {
    EscrowState.NONE: {EscrowState.HELD},
    EscrowState.HELD: {EscrowState.RELEASED, EscrowState.RETURNED},
    EscrowState.RELEASED: set(),
    EscrowState.RETURNED: set(),
}

TICKET_EDGES = {
    TicketStatus.PENDING: {TicketStatus.ASSIGNED, TicketStatus.REJECTED},
    TicketStatus.ASSIGNED: {
        TicketStatus.ASSIGNED,
        TicketStatus.IN_PROGRESS,
        TicketStatus.COMPLETED,
        TicketStatus.REJECTED,
    },
    TicketStatus.IN_PROGRESS: {TicketStatus.COMPLETED, TicketStatus.REJECTED},
    TicketStatus.COMPLETED: set(),
    TicketStatus.REJECTED: set(),
}

VERIFICATION_EDGES = {
    VerificationRequestStatus.PENDING: {
        VerificationRequestStatus.APPROVED,
        VerificationRequestStatus.REJECTED,
    },
    VerificationRequestStatus.APPROVED: set(),
    VerificationRequestStatus.REJECTED: set(),
}


def check_exhaustive(edges: Mapping, enum_cls: Type[Enum]):
    missing = set(enum_cls) - set(edges)
    if missing:
        raise RuntimeError(
            f"{enum_cls.__name__} states without transition rules: {sorted(m.value for m in missing)}"
        )


check_exhaustive(BOOKING_EDGES, BookingStatus)
check_exhaustive(PAYMENT_EDGES, PaymentStatus)
check_exhaustive(ESCROW_EDGES, EscrowState)
check_exhaustive(TICKET_EDGES, TicketStatus)
check_exhaustive(VERIFICATION_EDGES, VerificationRequestStatus)


def can_transition(edges: Mapping, current, target) -> bool:
    return target in edges.get(current, set())


def ensure_transition(entity: str, edges: Mapping, current, target):
    if not can_transition(edges, current, target):
        raise IllegalTransitionError(entity, current, target)
