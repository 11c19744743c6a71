import uuid
from typing import Optional

from models.enums import ActorRole
from models.models import Booking, MaintenanceTicket, Payment, Property, Provider
from schemas.schema import Actor


class LifecyclePolicy:
    """Pure authorization checks. Callers raise ``PermissionDeniedError``."""

    @staticmethod
    def manages_property(property: Optional[Property], user_id: uuid.UUID) -> bool:
        if not property:
            return False
        return user_id in {property.owner_id, property.managed_by_id}

    @staticmethod
    def can_view_booking(actor: Actor, booking: Booking, property: Property) -> bool:
        return (
            actor.is_admin
            or actor.is_system
            or booking.user_id == actor.id
            or LifecyclePolicy.manages_property(property, actor.id)
        )

    @staticmethod
    def can_decide_booking(actor: Actor, property: Property) -> bool:
        # confirm and reject
        return actor.is_admin or LifecyclePolicy.manages_property(property, actor.id)

    @staticmethod
    def can_cancel_booking(actor: Actor, booking: Booking, property: Property) -> bool:
        return (
            actor.is_admin
            or booking.user_id == actor.id
            or LifecyclePolicy.manages_property(property, actor.id)
        )

    @staticmethod
    def can_complete_booking(actor: Actor, property: Property) -> bool:
        return (
            actor.is_admin
            or actor.is_system
            or LifecyclePolicy.manages_property(property, actor.id)
        )

    @staticmethod
    def can_pay_booking(actor: Actor, booking: Booking) -> bool:
        if actor.is_admin:
            return True
        return booking.user_id is not None and booking.user_id == actor.id

    @staticmethod
    def can_view_payment(actor: Actor, payment: Payment) -> bool:
        return actor.is_admin or actor.is_system or payment.user_id == actor.id

    @staticmethod
    def can_refund(actor: Actor) -> bool:
        return actor.role in {ActorRole.ADMIN, ActorRole.SYSTEM}

    @staticmethod
    def is_ticket_party(actor: Actor, ticket: MaintenanceTicket) -> bool:
        return actor.is_admin or actor.id in {ticket.payer_id, ticket.owner_id}

    @staticmethod
    def can_fund_escrow(actor: Actor, ticket: MaintenanceTicket) -> bool:
        return actor.id == ticket.payer_id

    @staticmethod
    def can_move_escrow(actor: Actor, ticket: MaintenanceTicket) -> bool:
        # release and return outside of dispute resolution
        return actor.is_system or LifecyclePolicy.is_ticket_party(actor, ticket)

    @staticmethod
    def can_resolve_dispute(actor: Actor) -> bool:
        return actor.is_admin

    @staticmethod
    def can_submit_verification(actor: Actor, provider: Provider) -> bool:
        return actor.is_admin or provider.user_id == actor.id

    @staticmethod
    def can_review_verification(actor: Actor) -> bool:
        return actor.is_admin
