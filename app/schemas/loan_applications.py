from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.common import Pagination, reject_null


class LoanApplicationStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    DISBURSED = "disbursed"


class OfferStage(str, Enum):
    NONE = "none"
    OFFER_LETTER_SENT = "offer_letter_sent"
    OFFER_LETTER_SIGNED = "offer_letter_signed"
    OFFER_LETTER_DECLINED = "offer_letter_declined"


class LoanPurpose(str, Enum):
    WORKING_CAPITAL = "working_capital"
    BUSINESS_EXPANSION = "business_expansion"
    EQUIPMENT_PURCHASE = "equipment_purchase"
    INVENTORY_FINANCING = "inventory_financing"
    DEBT_CONSOLIDATION = "debt_consolidation"
    REAL_ESTATE = "real_estate"
    PERSONAL = "personal"
    OTHER = "other"


EDITABLE_STATUSES = {LoanApplicationStatus.DRAFT.value, LoanApplicationStatus.SUBMITTED.value}


class LoanApplicationCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    loan_product_id: UUID
    business_id: UUID | None = None
    loan_amount: Decimal = Field(gt=0)
    loan_term: int = Field(ge=1)
    currency: str = Field(min_length=3, max_length=3)
    purpose: LoanPurpose
    purpose_description: str | None = Field(default=None, max_length=2000)
    is_business_loan: bool = True
    co_applicant_ids: list[UUID] = Field(default_factory=list)
    as_draft: bool = False


class LoanApplicationUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    loan_amount: Decimal | None = Field(default=None, gt=0)
    loan_term: int | None = Field(default=None, ge=1)
    purpose: LoanPurpose | None = None
    purpose_description: str | None = Field(default=None, max_length=2000)
    co_applicant_ids: list[UUID] | None = None

    @field_validator("loan_amount", "loan_term", "purpose", "co_applicant_ids")
    @classmethod
    def required_columns_not_null(cls, v):
        return reject_null(v)


class LoanApplicationDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: UUID
    application_number: str
    user_id: UUID
    business_id: UUID | None = None
    loan_product_id: UUID
    co_applicant_ids: list[UUID] = Field(default_factory=list)
    loan_amount: Decimal
    loan_term: int
    currency: str
    purpose: str
    purpose_description: str | None = None
    is_business_loan: bool
    status: LoanApplicationStatus
    status_reason: str | None = None
    rejection_reason: str | None = None
    offer_stage: OfferStage
    last_updated_by: UUID | None = None
    last_updated_at: datetime | None = None
    submitted_at: datetime | None = None
    reviewed_at: datetime | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    disbursed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LoanApplicationListResponse(BaseModel):
    items: list[LoanApplicationDTO]
    pagination: Pagination


class LoanApplicationWithdraw(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)
