from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.common import reject_null


class BusinessBase(BaseModel):
    description: str | None = Field(default=None, max_length=5000)
    image_url: str | None = Field(default=None, max_length=1024)
    entity_type: str | None = Field(default=None, max_length=50)
    country: str | None = Field(default=None, max_length=100)
    city: str | None = Field(default=None, max_length=100)
    address: str | None = Field(default=None, max_length=255)
    zip_code: str | None = Field(default=None, max_length=20)
    sector: str | None = Field(default=None, max_length=100)
    year_of_incorporation: int | None = Field(default=None, ge=1800, le=2100)
    avg_monthly_turnover: Decimal | None = Field(default=None, ge=0)
    avg_yearly_turnover: Decimal | None = Field(default=None, ge=0)
    borrowing_history: bool | None = None
    amount_borrowed: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    ownership_type: str | None = Field(default=None, max_length=50)
    ownership_percentage: int | None = Field(default=None, ge=0, le=100)
    is_owned: bool | None = None


class BusinessCreate(BusinessBase):
    name: str = Field(min_length=1, max_length=255)


class BusinessUpdate(BusinessBase):
    name: str | None = Field(default=None, min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def name_not_null(cls, v: str | None) -> str:
        return reject_null(v)


class BusinessDTO(BusinessBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    name: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
