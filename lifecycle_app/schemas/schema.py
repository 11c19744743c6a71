from __future__ import annotations

import re
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional, Union

import phonenumbers
from pydantic import (
    BaseModel,
    EmailStr,
    Field,
    HttpUrl,
    field_validator,
    model_validator,
)
from typing_extensions import Annotated

from models.enums import (
    MOBILE_MONEY_METHODS,
    ActorRole,
    BookingKind,
    BookingStatus,
    DisputeResolution,
    EscrowState,
    PaymentMethodType,
    PaymentOutcome,
    PaymentStatus,
    PaymentType,
    TicketStatus,
    VerificationRequestStatus,
)

MOBILE_MONEY_PHONE = re.compile(r"^(256|0)?[37][0-9]{8}$")
SCHEDULED_TIME = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class Actor(BaseModel):
    """Who is performing an operation. Passed explicitly to every command."""

    id: uuid.UUID
    role: ActorRole

    model_config = {"frozen": True}

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @property
    def is_system(self) -> bool:
        return self.role == ActorRole.SYSTEM


SYSTEM_ACTOR = Actor(
    id=uuid.UUID("00000000-0000-0000-0000-000000000000"), role=ActorRole.SYSTEM
)


class ContactSnapshot(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    phone: str
    message: Optional[str] = Field(None, max_length=2000)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value: str) -> str:
        return value.strip()

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: str):
        try:
            parsed = phonenumbers.parse(value, "UG")
        except phonenumbers.NumberParseException:
            raise ValueError("Invalid phone number format. Use e.g. +256772123456")
        if not phonenumbers.is_valid_number(parsed):
            raise ValueError("Invalid phone number. Use full international format.")
        return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


class BookingBase(ContactSnapshot):
    property_id: uuid.UUID
    payment_amount: Optional[Decimal] = None
    currency: str = "UGX"

    @field_validator("currency", mode="before")
    @classmethod
    def upper_currency(cls, value: str) -> str:
        return (value or "UGX").strip().upper()


class ViewingBookingCreate(BookingBase):
    kind: Literal["viewing"] = "viewing"
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None

    @field_validator("scheduled_time")
    @classmethod
    def validate_time(cls, value: Optional[str]):
        if value is not None and not SCHEDULED_TIME.match(value):
            raise ValueError("scheduled_time must be HH:MM (24h)")
        return value


class InquiryBookingCreate(BookingBase):
    kind: Literal["inquiry"] = "inquiry"
    offer_amount: Optional[Decimal] = None
    financing_type: Optional[str] = None
    business_type: Optional[str] = None
    space_requirements: Optional[str] = None
    lease_term: Optional[str] = None


class ReservationBookingCreate(BookingBase):
    kind: Literal["booking"] = "booking"
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    guests: Optional[int] = Field(None, ge=0)
    move_in_date: Optional[date] = None
    lease_duration: Optional[str] = None
    occupants: Optional[int] = Field(None, ge=0)


BookingCreate = Annotated[
    Union[ViewingBookingCreate, InquiryBookingCreate, ReservationBookingCreate],
    Field(discriminator="kind"),
]


class BookingReason(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class BookingRejectIn(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class PaymentInstrumentIn(BaseModel):
    payment_method: PaymentMethodType
    saved_method_id: Optional[uuid.UUID] = None
    phone_number: Optional[str] = None
    card_token: Optional[str] = None
    card_last4: Optional[str] = Field(None, pattern=r"^\d{4}$")
    bank_name: Optional[str] = None

    @field_validator("phone_number")
    @classmethod
    def validate_mobile_money_phone(cls, value: Optional[str]):
        if value is None:
            return value
        clean = re.sub(r"[\s\-+]", "", value)
        if not MOBILE_MONEY_PHONE.match(clean):
            raise ValueError("Invalid mobile money number. Use e.g. 0772123456")
        return clean

    @model_validator(mode="after")
    def check_instrument(self):
        if self.saved_method_id:
            return self
        if self.payment_method in MOBILE_MONEY_METHODS and not self.phone_number:
            raise ValueError("phone_number is required for mobile money payments")
        if self.payment_method == PaymentMethodType.CARD and not self.card_token:
            raise ValueError("card_token is required for card payments")
        return self


class RefundRequest(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0)
    reason: str = Field(..., min_length=1, max_length=1000)


class PaymentMethodCreate(BaseModel):
    type: PaymentMethodType
    name: str = Field(..., min_length=1, max_length=100)
    phone_number: Optional[str] = None
    card_token: Optional[str] = None
    card_last4: Optional[str] = Field(None, pattern=r"^\d{4}$")
    card_brand: Optional[str] = None
    expiry_month: Optional[int] = Field(None, ge=1, le=12)
    expiry_year: Optional[int] = Field(None, ge=2000, le=2100)
    bank_name: Optional[str] = None
    account_number: Optional[str] = Field(None, min_length=4, max_length=30)
    is_default: bool = False

    @field_validator("phone_number")
    @classmethod
    def validate_mobile_money_phone(cls, value: Optional[str]):
        if value is None:
            return value
        clean = re.sub(r"[\s\-+]", "", value)
        if not MOBILE_MONEY_PHONE.match(clean):
            raise ValueError("Invalid mobile money number. Use e.g. 0772123456")
        return clean

    @model_validator(mode="after")
    def check_fields_for_type(self):
        if self.type in MOBILE_MONEY_METHODS and not self.phone_number:
            raise ValueError("phone_number is required for mobile money methods")
        if self.type == PaymentMethodType.CARD and not (
            self.card_token and self.card_last4
        ):
            raise ValueError("card_token and card_last4 are required for cards")
        if self.type == PaymentMethodType.BANK_TRANSFER and not (
            self.bank_name and self.account_number
        ):
            raise ValueError("bank_name and account_number are required for banks")
        return self


class ProviderCallbackIn(BaseModel):
    schema_version: Literal["1"]
    provider_ref: str = Field(..., min_length=1, max_length=255)
    internal_ref: Optional[str] = None
    outcome: PaymentOutcome
    failure_reason: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CallbackAck(BaseModel):
    received: bool = True
    result: str
    payment_id: Optional[uuid.UUID] = None


class VerificationDocument(BaseModel):
    name: str = Field(..., min_length=1)
    url: HttpUrl
    type: str = Field(..., min_length=1)


class VerificationSubmitIn(BaseModel):
    id_document_url: Optional[HttpUrl] = None
    business_license_url: Optional[HttpUrl] = None
    additional_documents: List[VerificationDocument] = Field(default_factory=list)

    @model_validator(mode="after")
    def require_a_document(self):
        if not (
            self.id_document_url
            or self.business_license_url
            or self.additional_documents
        ):
            raise ValueError("At least one verification document is required")
        return self

    def documents(self) -> dict:
        return {
            "id_document_url": str(self.id_document_url)
            if self.id_document_url
            else None,
            "business_license_url": str(self.business_license_url)
            if self.business_license_url
            else None,
            "additional_documents": [
                doc.model_dump(mode="json") for doc in self.additional_documents
            ],
        }


class VerificationReviewIn(BaseModel):
    decision: VerificationRequestStatus
    reason: Optional[str] = Field(None, max_length=1000)

    @field_validator("decision")
    @classmethod
    def decision_is_final(cls, value: VerificationRequestStatus):
        if value == VerificationRequestStatus.PENDING:
            raise ValueError("decision must be approved or rejected")
        return value


class MaintenanceTicketCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=255)
    property_id: Optional[uuid.UUID] = None
    owner_id: Optional[uuid.UUID] = None
    escrow_amount: Decimal = Field(..., gt=0)
    currency: str = "UGX"


class AssignProviderIn(BaseModel):
    provider_id: uuid.UUID


class DisputeResolveIn(BaseModel):
    resolution: DisputeResolution
    reason: str = Field(..., min_length=1, max_length=1000)


class BookingOut(BaseModel):
    id: uuid.UUID
    property_id: uuid.UUID
    user_id: Optional[uuid.UUID]
    kind: BookingKind
    status: BookingStatus
    name: str
    email: str
    phone: str
    message: Optional[str]
    scheduled_date: Optional[date]
    scheduled_time: Optional[str]
    check_in_date: Optional[date]
    check_out_date: Optional[date]
    guests: Optional[int]
    move_in_date: Optional[date]
    lease_duration: Optional[str]
    occupants: Optional[int]
    offer_amount: Optional[Decimal]
    financing_type: Optional[str]
    payment_amount: Optional[Decimal]
    currency: str
    payment_status: Optional[PaymentStatus]
    close_requested_status: Optional[BookingStatus]
    close_reason: Optional[str]
    confirmed_at: Optional[datetime]
    closed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PaymentOut(BaseModel):
    id: uuid.UUID
    booking_id: Optional[uuid.UUID]
    maintenance_ticket_id: Optional[uuid.UUID]
    parent_payment_id: Optional[uuid.UUID]
    type: PaymentType
    status: PaymentStatus
    payment_method: PaymentMethodType
    amount: Decimal
    currency: str
    transaction_ref: Optional[str]
    external_ref: Optional[str]
    instrument: Optional[dict]
    failure_reason: Optional[str]
    refunded_amount: Optional[Decimal]
    refunded_at: Optional[datetime]
    receipt_number: Optional[str]
    is_escrow: bool
    escrow_state: EscrowState
    completed_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("instrument")
    @classmethod
    def hide_charge_handles(cls, value: Optional[dict]):
        if not value:
            return value
        return {k: v for k, v in value.items() if k not in ("msisdn", "token")}


class PaymentMethodOut(BaseModel):
    id: uuid.UUID
    type: PaymentMethodType
    name: str
    phone_number: Optional[str]
    last4: Optional[str]
    card_brand: Optional[str]
    expiry_month: Optional[int]
    expiry_year: Optional[int]
    bank_name: Optional[str]
    account_number: Optional[str]
    is_default: bool
    is_verified: bool

    model_config = {"from_attributes": True}


class MaintenanceTicketOut(BaseModel):
    id: uuid.UUID
    title: str
    property_id: Optional[uuid.UUID]
    payer_id: uuid.UUID
    assigned_provider_id: Optional[uuid.UUID]
    status: TicketStatus
    escrow_amount: Optional[Decimal]
    currency: str
    escrow_payment_id: Optional[uuid.UUID]
    dispute_reason: Optional[str]
    completed_at: Optional[datetime]

    model_config = {"from_attributes": True}


class VerificationRequestOut(BaseModel):
    id: uuid.UUID
    provider_id: uuid.UUID
    status: VerificationRequestStatus
    id_document_url: Optional[str]
    business_license_url: Optional[str]
    additional_documents: Optional[list]
    rejection_reason: Optional[str]
    reviewed_by: Optional[uuid.UUID]
    reviewed_at: Optional[datetime]
    submitted_at: datetime

    model_config = {"from_attributes": True}
