from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.schemas.common import Pagination, reject_null


class OfferLetterStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    DELIVERED = "delivered"
    VIEWED = "viewed"
    SIGNED = "signed"
    DECLINED = "declined"
    VOIDED = "voided"
    EXPIRED = "expired"


class DocuSignStatus(str, Enum):
    NOT_SENT = "not_sent"
    SENT = "sent"
    DELIVERED = "delivered"
    VIEWED = "viewed"
    COMPLETED = "completed"
    DECLINED = "declined"
    VOIDED = "voided"
    EXPIRED = "expired"


TERMINAL_OFFER_STATUSES = frozenset(
    {
        OfferLetterStatus.SIGNED.value,
        OfferLetterStatus.DECLINED.value,
        OfferLetterStatus.VOIDED.value,
        OfferLetterStatus.EXPIRED.value,
    }
)


class OfferLetterCreate(BaseModel):
    loan_application_id: UUID
    offer_amount: Decimal = Field(gt=0)
    offer_term: int = Field(ge=1)
    interest_rate: Decimal = Field(ge=0, le=100)
    currency: str = Field(min_length=3, max_length=3)
    special_conditions: str | None = Field(default=None, max_length=5000)
    requires_guarantor: bool = False
    requires_collateral: bool = False
    recipient_email: EmailStr
    recipient_name: str = Field(min_length=1, max_length=255)
    expires_at: datetime | None = None
    notes: str | None = Field(default=None, max_length=2000)


class OfferLetterUpdate(BaseModel):
    offer_amount: Decimal | None = Field(default=None, gt=0)
    offer_term: int | None = Field(default=None, ge=1)
    interest_rate: Decimal | None = Field(default=None, ge=0, le=100)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    special_conditions: str | None = Field(default=None, max_length=5000)
    requires_guarantor: bool | None = None
    requires_collateral: bool | None = None
    recipient_email: EmailStr | None = None
    recipient_name: str | None = Field(default=None, min_length=1, max_length=255)
    expires_at: datetime | None = None
    notes: str | None = Field(default=None, max_length=2000)

    @field_validator(
        "offer_amount",
        "offer_term",
        "interest_rate",
        "currency",
        "requires_guarantor",
        "requires_collateral",
        "recipient_email",
        "recipient_name",
        "expires_at",
    )
    @classmethod
    def required_columns_not_null(cls, v):
        return reject_null(v)


class OfferLetterSend(BaseModel):
    email_subject: str | None = Field(default=None, max_length=200)
    email_message: str | None = Field(default=None, max_length=2000)


class OfferLetterVoid(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class OfferLetterListQuery(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: OfferLetterStatus | None = None
    docusign_status: DocuSignStatus | None = None
    loan_application_id: UUID | None = None
    is_active: bool | None = None
    expires_before: datetime | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class OfferLetterDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_application_id: UUID
    offer_number: str
    version: int
    offer_amount: Decimal
    offer_term: int
    interest_rate: Decimal
    currency: str
    special_conditions: str | None = None
    requires_guarantor: bool
    requires_collateral: bool
    recipient_email: str
    recipient_name: str
    status: str
    docusign_status: str
    docusign_envelope_id: str | None = None
    offer_letter_url: str | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    viewed_at: datetime | None = None
    signed_at: datetime | None = None
    declined_at: datetime | None = None
    voided_at: datetime | None = None
    expired_at: datetime | None = None
    expires_at: datetime
    is_active: bool
    created_by: UUID | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class OfferLetterListResponse(BaseModel):
    items: list[OfferLetterDTO]
    pagination: Pagination


class DocuSignWebhookResult(BaseModel):
    success: bool
    message: str
    offer_letter_id: UUID | None = None
    status: str | None = None
