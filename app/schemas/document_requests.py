from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.documents import BusinessDocType, PersonalDocType, PersonalDocumentInput


class DocumentRequestStatus(str, Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"


REQUESTABLE_DOCUMENT_TYPES = frozenset(
    [doc_type.value for doc_type in PersonalDocType]
    + [doc_type.value for doc_type in BusinessDocType]
    + ["other"]
)


class DocumentRequestCreate(BaseModel):
    loan_application_id: UUID
    requested_from: UUID
    document_type: str = Field(min_length=1, max_length=50)
    description: str = Field(min_length=1, max_length=2000)
    is_required: bool = True


class DocumentRequestFulfill(BaseModel):
    document: PersonalDocumentInput


class DocumentRequestDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_application_id: UUID
    requested_by: UUID
    requested_from: UUID
    document_type: str
    description: str
    is_required: bool
    status: str
    fulfilled_at: datetime | None = None
    fulfilled_with: UUID | None = None
    created_at: datetime | None = None
