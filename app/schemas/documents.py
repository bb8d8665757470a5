from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PersonalDocType(str, Enum):
    NATIONAL_ID_FRONT = "national_id_front"
    NATIONAL_ID_BACK = "national_id_back"
    PASSPORT_BIO_PAGE = "passport_bio_page"
    PERSONAL_TAX_DOCUMENT = "personal_tax_document"
    USER_PHOTO = "user_photo"
    DRIVERS_LICENSE = "drivers_license"
    UTILITY_BILL = "utility_bill"
    BANK_STATEMENT = "bank_statement"


class BusinessDocType(str, Enum):
    BUSINESS_REGISTRATION = "business_registration"
    ARTICLES_OF_ASSOCIATION = "articles_of_association"
    BUSINESS_PERMIT = "business_permit"
    TAX_REGISTRATION_CERTIFICATE = "tax_registration_certificate"
    CERTIFICATE_OF_INCORPORATION = "certificate_of_incorporation"
    TAX_CLEARANCE_CERTIFICATE = "tax_clearance_certificate"
    PARTNERSHIP_DEED = "partnership_deed"
    MEMORANDUM_OF_ASSOCIATION = "memorandum_of_association"
    BUSINESS_PLAN = "business_plan"
    PITCH_DECK = "pitch_deck"
    ANNUAL_BANK_STATEMENT = "annual_bank_statement"
    AUDITED_FINANCIAL_STATEMENTS = "audited_financial_statements"


class PersonalDocumentInput(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    doc_type: PersonalDocType
    doc_url: str = Field(min_length=1, max_length=2048)


class PersonalDocumentsUpsert(BaseModel):
    documents: list[PersonalDocumentInput] = Field(min_length=1)
    loan_application_id: UUID | None = None


class PersonalDocumentDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    doc_type: str
    doc_url: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class BusinessDocumentInput(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    doc_type: BusinessDocType
    doc_url: str = Field(min_length=1, max_length=2048)
    is_password_protected: bool = False
    doc_password: str | None = Field(default=None, max_length=200)
    doc_bank_name: str | None = Field(default=None, max_length=100)
    doc_year: int | None = Field(default=None, ge=1900, le=2100)

    @model_validator(mode="after")
    def _password_when_protected(self) -> "BusinessDocumentInput":
        if self.is_password_protected and not self.doc_password:
            raise ValueError("doc_password is required when is_password_protected is true")
        return self


class BusinessDocumentsUpsert(BaseModel):
    documents: list[BusinessDocumentInput] = Field(min_length=1)


class BusinessDocumentDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    business_id: UUID
    doc_type: str
    doc_url: str
    is_password_protected: bool
    doc_bank_name: str | None = None
    doc_year: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
