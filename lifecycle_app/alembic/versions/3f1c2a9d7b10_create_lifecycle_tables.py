"""create booking, payment, escrow and verification tables

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-17 09:12:40.118302
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from models.enums import (
    ActorRole,
    BookingKind,
    BookingStatus,
    CallbackResult,
    EntityType,
    EscrowState,
    PaymentMethodType,
    PaymentOutcome,
    PaymentStatus,
    PaymentType,
    TicketStatus,
    VerificationRequestStatus,
)


# revision identifiers, used by Alembic.
revision: str = "3f1c2a9d7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _enum(enum_cls):
    # Stored as VARCHAR holding the member name
    return sa.Enum(enum_cls, native_enum=False)


def _uuid():
    return sa.Uuid(as_uuid=True)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "properties",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("owner_id", _uuid(), nullable=False),
        sa.Column("managed_by_id", _uuid(), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_properties_owner_id", "properties", ["owner_id"])

    op.create_table(
        "providers",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column("business_name", sa.String(255), nullable=False),
        sa.Column("payout_method", _enum(PaymentMethodType), nullable=True),
        sa.Column("payout_account", sa.String(64), nullable=True),
        sa.Column("payout_bank_code", sa.String(20), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column("is_kyc_verified", sa.Boolean(), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_providers_user_id", "providers", ["user_id"], unique=True)

    op.create_table(
        "bookings",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "property_id", _uuid(), sa.ForeignKey("properties.id"), nullable=False
        ),
        sa.Column("user_id", _uuid(), nullable=True),
        sa.Column("kind", _enum(BookingKind), nullable=False),
        sa.Column("status", _enum(BookingStatus), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("scheduled_time", sa.String(5), nullable=True),
        sa.Column("check_in_date", sa.Date(), nullable=True),
        sa.Column("check_out_date", sa.Date(), nullable=True),
        sa.Column("guests", sa.Integer(), nullable=True),
        sa.Column("move_in_date", sa.Date(), nullable=True),
        sa.Column("lease_duration", sa.String(50), nullable=True),
        sa.Column("occupants", sa.Integer(), nullable=True),
        sa.Column("offer_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("financing_type", sa.String(50), nullable=True),
        sa.Column("business_type", sa.String(100), nullable=True),
        sa.Column("space_requirements", sa.Text(), nullable=True),
        sa.Column("lease_term", sa.String(50), nullable=True),
        sa.Column("payment_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("payment_status", _enum(PaymentStatus), nullable=True),
        sa.Column("close_requested_status", _enum(BookingStatus), nullable=True),
        sa.Column("close_reason", sa.Text(), nullable=True),
        sa.Column("close_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_bookings_property_id", "bookings", ["property_id"])
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])

    op.create_table(
        "maintenance_tickets",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column(
            "property_id", _uuid(), sa.ForeignKey("properties.id"), nullable=True
        ),
        sa.Column("payer_id", _uuid(), nullable=False),
        sa.Column("owner_id", _uuid(), nullable=True),
        sa.Column(
            "assigned_provider_id",
            _uuid(),
            sa.ForeignKey("providers.id"),
            nullable=True,
        ),
        sa.Column("status", _enum(TicketStatus), nullable=False),
        sa.Column("escrow_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("escrow_payment_id", _uuid(), nullable=True),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
    )

    op.create_table(
        "payments",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), nullable=True),
        sa.Column(
            "property_id", _uuid(), sa.ForeignKey("properties.id"), nullable=True
        ),
        sa.Column("booking_id", _uuid(), sa.ForeignKey("bookings.id"), nullable=True),
        sa.Column(
            "maintenance_ticket_id",
            _uuid(),
            sa.ForeignKey("maintenance_tickets.id"),
            nullable=True,
        ),
        sa.Column(
            "parent_payment_id", _uuid(), sa.ForeignKey("payments.id"), nullable=True
        ),
        sa.Column("type", _enum(PaymentType), nullable=False),
        sa.Column("status", _enum(PaymentStatus), nullable=False),
        sa.Column("payment_method", _enum(PaymentMethodType), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("transaction_ref", sa.String(120), nullable=True, unique=True),
        sa.Column("external_ref", sa.String(255), nullable=True, unique=True),
        sa.Column("instrument", sa.JSON(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("refunded_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_reason", sa.Text(), nullable=True),
        sa.Column("receipt_number", sa.String(40), nullable=True, unique=True),
        sa.Column("is_escrow", sa.Boolean(), nullable=False),
        sa.Column("escrow_state", _enum(EscrowState), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"])
    op.create_index(
        "ix_payments_maintenance_ticket_id", "payments", ["maintenance_ticket_id"]
    )
    op.create_index("ix_payments_parent_payment_id", "payments", ["parent_payment_id"])
    op.create_index("ix_payments_user_created", "payments", ["user_id", "created_at"])
    op.create_index("ix_payments_status_created", "payments", ["status", "created_at"])

    op.create_table(
        "payment_methods",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), nullable=False),
        sa.Column("type", _enum(PaymentMethodType), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=True),
        sa.Column("last4", sa.String(4), nullable=True),
        sa.Column("card_brand", sa.String(30), nullable=True),
        sa.Column("expiry_month", sa.Integer(), nullable=True),
        sa.Column("expiry_year", sa.Integer(), nullable=True),
        sa.Column("bank_name", sa.String(100), nullable=True),
        sa.Column("account_number", sa.String(20), nullable=True),
        sa.Column("provider_token", sa.String(255), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_payment_methods_user_id", "payment_methods", ["user_id"])
    op.create_index(
        "ix_payment_methods_user_default", "payment_methods", ["user_id", "is_default"]
    )

    op.create_table(
        "provider_verification_requests",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column(
            "provider_id", _uuid(), sa.ForeignKey("providers.id"), nullable=False
        ),
        sa.Column("status", _enum(VerificationRequestStatus), nullable=False),
        sa.Column("id_document_url", sa.String(500), nullable=True),
        sa.Column("business_license_url", sa.String(500), nullable=True),
        sa.Column("additional_documents", sa.JSON(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_by", _uuid(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index(
        "ix_provider_verification_requests_provider_id",
        "provider_verification_requests",
        ["provider_id"],
    )
    op.create_index(
        "uq_provider_verification_one_pending",
        "provider_verification_requests",
        ["provider_id"],
        unique=True,
        sqlite_where=sa.text("status = 'PENDING'"),
        postgresql_where=sa.text("status = 'PENDING'"),
    )

    op.create_table(
        "status_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entity_type", _enum(EntityType), nullable=False),
        sa.Column("entity_id", _uuid(), nullable=False),
        sa.Column("from_status", sa.String(32), nullable=True),
        sa.Column("to_status", sa.String(32), nullable=False),
        sa.Column("actor_id", _uuid(), nullable=True),
        sa.Column("actor_role", _enum(ActorRole), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_status_history_entity", "status_history", ["entity_type", "entity_id"]
    )

    op.create_table(
        "payment_callbacks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", _enum(PaymentMethodType), nullable=False),
        sa.Column("provider_ref", sa.String(255), nullable=False),
        sa.Column("internal_ref", sa.String(120), nullable=True),
        sa.Column("outcome", _enum(PaymentOutcome), nullable=False),
        sa.Column("payment_id", _uuid(), nullable=True),
        sa.Column("result", _enum(CallbackResult), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_payment_callbacks_provider_ref", "payment_callbacks", ["provider_ref"]
    )
    op.create_index(
        "ix_payment_callbacks_payment_id", "payment_callbacks", ["payment_id"]
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("payment_callbacks")
    op.drop_table("status_history")
    op.drop_table("provider_verification_requests")
    op.drop_table("payment_methods")
    op.drop_table("payments")
    op.drop_table("maintenance_tickets")
    op.drop_table("bookings")
    op.drop_table("providers")
    op.drop_table("properties")
