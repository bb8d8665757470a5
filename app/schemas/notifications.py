from __future__ import annotations

from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    LOAN_STATUS_UPDATE = "loan_status_update"
    DOCUMENT_REQUEST = "document_request"
    LOAN_APPROVAL = "loan_approval"
    LOAN_REJECTION = "loan_rejection"
    PAYMENT_REMINDER = "payment_reminder"
    DISBURSEMENT_NOTIFICATION = "disbursement_notification"


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class NotificationRequest(BaseModel):
    """``type`` and ``channel`` stay plain strings; the dispatcher rejects unknown values."""

    type: str
    channel: str
    recipient_id: UUID
    loan_application_id: UUID | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class NotificationResult(BaseModel):
    success: bool
    channel: str
    message_id: str | None = None
    error: str | None = None
