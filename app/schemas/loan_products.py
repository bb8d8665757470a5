from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.common import Pagination, reject_null


class TermUnit(str, Enum):
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    QUARTERS = "quarters"
    YEARS = "years"


class InterestType(str, Enum):
    FIXED = "fixed"
    VARIABLE = "variable"


class RatePeriod(str, Enum):
    PER_DAY = "per_day"
    PER_MONTH = "per_month"
    PER_QUARTER = "per_quarter"
    PER_YEAR = "per_year"


class RepaymentFrequency(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class LoanProductCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(min_length=1, max_length=150)
    slug: str | None = Field(default=None, max_length=180, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    summary: str | None = None
    description: str | None = None
    currency: str = Field(min_length=3, max_length=3)
    min_amount: Decimal = Field(ge=0)
    max_amount: Decimal = Field(gt=0)
    min_term: int = Field(ge=1)
    max_term: int = Field(ge=1)
    term_unit: TermUnit = TermUnit.MONTHS
    interest_rate: Decimal = Field(ge=0, le=100)
    interest_type: InterestType = InterestType.FIXED
    rate_period: RatePeriod = RatePeriod.PER_YEAR
    repayment_frequency: RepaymentFrequency = RepaymentFrequency.MONTHLY
    processing_fee_flat: Decimal | None = Field(default=None, ge=0)
    grace_period_days: int = Field(default=0, ge=0)
    is_active: bool = True


class LoanProductUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str | None = Field(default=None, min_length=1, max_length=150)
    summary: str | None = None
    description: str | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    min_amount: Decimal | None = Field(default=None, ge=0)
    max_amount: Decimal | None = Field(default=None, gt=0)
    min_term: int | None = Field(default=None, ge=1)
    max_term: int | None = Field(default=None, ge=1)
    term_unit: TermUnit | None = None
    interest_rate: Decimal | None = Field(default=None, ge=0, le=100)
    interest_type: InterestType | None = None
    rate_period: RatePeriod | None = None
    repayment_frequency: RepaymentFrequency | None = None
    processing_fee_flat: Decimal | None = Field(default=None, ge=0)
    grace_period_days: int | None = Field(default=None, ge=0)
    is_active: bool | None = None

    @field_validator(
        "name",
        "currency",
        "min_amount",
        "max_amount",
        "min_term",
        "max_term",
        "term_unit",
        "interest_rate",
        "interest_type",
        "rate_period",
        "repayment_frequency",
        "grace_period_days",
        "is_active",
    )
    @classmethod
    def required_columns_not_null(cls, v):
        return reject_null(v)


class LoanProductDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str
    summary: str | None = None
    description: str | None = None
    currency: str
    min_amount: Decimal
    max_amount: Decimal
    min_term: int
    max_term: int
    term_unit: str
    interest_rate: Decimal
    interest_type: str
    rate_period: str
    repayment_frequency: str
    processing_fee_flat: Decimal | None = None
    grace_period_days: int
    version: int
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LoanProductListResponse(BaseModel):
    items: list[LoanProductDTO]
    pagination: Pagination
