from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ApprovalStage(str, Enum):
    LOAN_APPROVED = "loan_approved"
    OFFER_LETTER_SIGNED = "offer_letter_signed"


class SnapshotDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_application_id: UUID
    created_by: UUID | None = None
    approval_stage: str
    snapshot_data: dict[str, Any]
    created_at: datetime | None = None


class SnapshotSummaryDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    loan_application_id: UUID
    created_by: UUID | None = None
    approval_stage: str
    created_at: datetime | None = None
