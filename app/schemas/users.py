from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class SignUpData(BaseModel):
    external_id: str
    email: EmailStr
    first_name: str
    last_name: str
    gender: str
    phone_number: str
    dob: date
    image_url: str | None = None


class UserDataExtraction(BaseModel):
    success: bool
    user_data: SignUpData | None = None
    missing_fields: list[str] = Field(default_factory=list)
    error: str | None = None
    code: str | None = None


class EmailUpdateExtraction(BaseModel):
    success: bool
    external_id: str | None = None
    email: str | None = None
    error: str | None = None
    code: str | None = None


class UserProfileUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    phone_number: str | None = Field(default=None, max_length=50)
    gender: Gender | None = None
    dob: date | None = None
    image_url: str | None = Field(default=None, max_length=1024)


class UserDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    external_id: str
    email: EmailStr
    first_name: str | None = None
    last_name: str | None = None
    phone_number: str | None = None
    gender: str | None = None
    dob: date | None = None
    role: str | None = None
    image_url: str | None = None
    created_at: datetime | None = None
