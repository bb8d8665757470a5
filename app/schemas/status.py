from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.loan_applications import LoanApplicationStatus, OfferStage


class StatusUpdateRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: LoanApplicationStatus
    reason: str | None = Field(default=None, max_length=1000)
    rejection_reason: str | None = Field(default=None, max_length=1000)
    metadata: dict[str, Any] | None = None


class TransitionValidation(BaseModel):
    is_valid: bool
    allowed_transitions: list[str]
    error: str | None = None


class StatusUpdateResult(BaseModel):
    success: bool
    previous_status: str
    new_status: str
    message: str
    snapshot_created: bool
    audit_entry_id: UUID


class StatusDTO(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: LoanApplicationStatus
    status_reason: str | None = None
    last_updated_by: UUID | None = None
    last_updated_at: datetime | None = None
    offer_stage: OfferStage = OfferStage.NONE
    allowed_transitions: list[str]
    is_terminal: bool


class StatusHistoryEntry(BaseModel):
    id: UUID
    status: str
    reason: str | None = None
    details: str | None = None
    user_id: UUID | None = None
    user_name: str
    user_email: str
    created_at: datetime | None = None
    metadata: dict[str, Any] | None = None
