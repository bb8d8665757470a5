from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.schemas.loan_applications import LoanApplicationStatus

APPLICATION_ACTION_PREFIX = "application_"


class AuditAction(str, Enum):
    APPLICATION_CREATED = "application_created"
    APPLICATION_DRAFT = "application_draft"
    APPLICATION_SUBMITTED = "application_submitted"
    APPLICATION_UNDER_REVIEW = "application_under_review"
    APPLICATION_APPROVED = "application_approved"
    APPLICATION_REJECTED = "application_rejected"
    APPLICATION_WITHDRAWN = "application_withdrawn"
    APPLICATION_DISBURSED = "application_disbursed"
    APPLICATION_UPDATED = "application_updated"
    APPLICATION_DELETED = "application_deleted"
    APPLICATION_OFFER_LETTER_SENT = "application_offer_letter_sent"
    APPLICATION_OFFER_LETTER_SIGNED = "application_offer_letter_signed"
    APPLICATION_OFFER_LETTER_DECLINED = "application_offer_letter_declined"
    STATUS_UPDATED = "status_updated"
    DOCUMENTS_UPLOADED = "documents_uploaded"
    DOCUMENTS_UPDATED = "documents_updated"
    DOCUMENT_REQUEST_CREATED = "document_request_created"
    DOCUMENT_REQUEST_FULFILLED = "document_request_fulfilled"
    OFFER_LETTER_CREATED = "offer_letter_created"
    OFFER_LETTER_UPDATED = "offer_letter_updated"
    OFFER_LETTER_SENT = "offer_letter_sent"
    OFFER_LETTER_DELIVERED = "offer_letter_delivered"
    OFFER_LETTER_VIEWED = "offer_letter_viewed"
    OFFER_LETTER_SIGNED = "offer_letter_signed"
    OFFER_LETTER_DECLINED = "offer_letter_declined"
    OFFER_LETTER_EXPIRED = "offer_letter_expired"
    OFFER_LETTER_VOIDED = "offer_letter_voided"
    OFFER_LETTER_DELETED = "offer_letter_deleted"
    SNAPSHOT_CREATED = "snapshot_created"

    @classmethod
    def for_status(cls, status: LoanApplicationStatus | str) -> "AuditAction":
        value = status.value if isinstance(status, LoanApplicationStatus) else status
        return cls(f"{APPLICATION_ACTION_PREFIX}{value}")

    @property
    def is_status_change(self) -> bool:
        return self in STATUS_CHANGE_ACTIONS

    @property
    def status(self) -> str | None:
        """Application status this action moved into, for status-change actions."""
        if not self.is_status_change:
            return None
        return self.value[len(APPLICATION_ACTION_PREFIX):]


STATUS_CHANGE_ACTIONS = frozenset(AuditAction.for_status(status) for status in LoanApplicationStatus)


class AuditLogParams(BaseModel):
    """Input for one audit append; required fields are checked by the recorder."""

    loan_application_id: UUID | None = None
    user_id: UUID | None = None
    action: AuditAction | None = None
    reason: str | None = None
    details: str | None = None
    metadata: dict[str, Any] | None = None
    before_data: dict[str, Any] | None = None
    after_data: dict[str, Any] | None = None


class AuditTrailEntryDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    loan_application_id: UUID
    user_id: UUID | None = None
    action: str
    reason: str | None = None
    details: str | None = None
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("metadata_", "metadata")
    )
    before_data: dict[str, Any] | None = None
    after_data: dict[str, Any] | None = None
    created_at: datetime | None = None


class AuditTrailSummary(BaseModel):
    loan_application_id: UUID
    total_entries: int
    last_action: str | None = None
    last_action_at: datetime | None = None
    action_counts: dict[str, int] = Field(default_factory=dict)
