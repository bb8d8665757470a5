from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ServiceError, bad_request, not_found, wrap_unexpected
from app.models.user import User
from app.schemas.notifications import (
    NotificationChannel,
    NotificationRequest,
    NotificationResult,
    NotificationType,
)
from app.services import email as email_service
from app.utils.templating import render_template

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS: tuple[str, ...] = (NotificationChannel.EMAIL.value,)

_TEMPLATES = {
    NotificationType.LOAN_STATUS_UPDATE: "email/loan_status_update.html",
    NotificationType.DOCUMENT_REQUEST: "email/document_request.html",
    NotificationType.LOAN_APPROVAL: "email/loan_approval.html",
    NotificationType.LOAN_REJECTION: "email/loan_rejection.html",
    NotificationType.PAYMENT_REMINDER: "email/payment_reminder.html",
    NotificationType.DISBURSEMENT_NOTIFICATION: "email/disbursement_notification.html",
}


def _subject(notification_type: NotificationType, data: dict[str, Any]) -> str:
    reference = data.get("application_number") or "your loan application"
    if notification_type is NotificationType.LOAN_STATUS_UPDATE:
        new_status = str(data.get("new_status", "updated")).replace("_", " ")
        return f"Update on {reference}: {new_status}"
    if notification_type is NotificationType.DOCUMENT_REQUEST:
        return f"Document requested for {reference}"
    if notification_type is NotificationType.LOAN_APPROVAL:
        return f"Good news: {reference} has been approved"
    if notification_type is NotificationType.LOAN_REJECTION:
        return f"Decision on {reference}"
    if notification_type is NotificationType.PAYMENT_REMINDER:
        return f"Payment reminder for {reference}"
    return f"Funds disbursed for {reference}"


def _parse_type(value: str) -> NotificationType:
    try:
        return NotificationType(value)
    except ValueError as exc:
        raise bad_request(
            f"[UNSUPPORTED_NOTIFICATION_TYPE] Unsupported notification type: {value}",
            details={"supported_types": [item.value for item in NotificationType]},
        ) from exc


def _parse_channel(value: str) -> NotificationChannel:
    try:
        return NotificationChannel(value)
    except ValueError as exc:
        raise bad_request(
            f"[INVALID_CHANNEL] Unsupported notification channel: {value}",
            details={"supported_channels": [item.value for item in NotificationChannel]},
        ) from exc


async def _get_recipient(db: AsyncSession, recipient_id: UUID) -> User:
    stmt = select(User).where(User.id == recipient_id, User.deleted_at.is_(None))
    recipient = (await db.execute(stmt)).scalar_one_or_none()
    if not recipient:
        raise not_found("[USER_NOT_FOUND] Notification recipient not found")
    return recipient


async def _send_email(
    recipient: User,
    notification_type: NotificationType,
    request: NotificationRequest,
) -> NotificationResult:
    context = {
        **request.data,
        "recipient_name": recipient.first_name or recipient.full_name or "there",
        "loan_application_id": str(request.loan_application_id) if request.loan_application_id else None,
    }
    html = render_template(_TEMPLATES[notification_type], context)
    result = await email_service.send_email(recipient.email, _subject(notification_type, request.data), html)
    return NotificationResult(
        success=result.success,
        channel=NotificationChannel.EMAIL.value,
        message_id=result.message_id,
        error=result.error,
    )


@wrap_unexpected("NOTIFICATION_ERROR", "Failed to send notification")
async def send_notification(db: AsyncSession, request: NotificationRequest) -> NotificationResult:
    """Deliver one notification.

    Raises ``ServiceError`` for invalid input (unknown type/channel, missing
    recipient). Transport failures come back in the result instead.
    """
    notification_type = _parse_type(request.type)
    channel = _parse_channel(request.channel)
    recipient = await _get_recipient(db, request.recipient_id)

    if channel is NotificationChannel.EMAIL:
        result = await _send_email(recipient, notification_type, request)
    else:
        # sms and push have no transport yet
        logger.info(
            "Notification channel %s not wired; acknowledging %s for user %s",
            channel.value,
            notification_type.value,
            recipient.id,
        )
        result = NotificationResult(
            success=True,
            channel=channel.value,
            message_id=f"{channel.value}-placeholder",
        )

    if not result.success:
        logger.warning(
            "Notification %s via %s to user %s failed: %s",
            notification_type.value,
            channel.value,
            recipient.id,
            result.error,
        )
    return result


async def _dispatch(
    db: AsyncSession,
    *,
    notification_type: NotificationType,
    recipient_id: UUID,
    loan_application_id: UUID | None,
    data: dict[str, Any],
    channels: Iterable[str],
) -> list[NotificationResult]:
    results: list[NotificationResult] = []
    for channel in channels:
        request = NotificationRequest(
            type=notification_type.value,
            channel=channel,
            recipient_id=recipient_id,
            loan_application_id=loan_application_id,
            data=data,
        )
        try:
            results.append(await send_notification(db, request))
        except ServiceError as exc:
            results.append(NotificationResult(success=False, channel=channel, error=exc.message))
    return results


async def send_status_update_notification(
    db: AsyncSession,
    *,
    recipient_id: UUID,
    loan_application_id: UUID,
    application_number: str,
    previous_status: str,
    new_status: str,
    reason: str | None = None,
    channels: Iterable[str] = DEFAULT_CHANNELS,
) -> list[NotificationResult]:
    return await _dispatch(
        db,
        notification_type=NotificationType.LOAN_STATUS_UPDATE,
        recipient_id=recipient_id,
        loan_application_id=loan_application_id,
        data={
            "application_number": application_number,
            "previous_status": previous_status,
            "new_status": new_status,
            "reason": reason,
        },
        channels=channels,
    )


async def send_document_request_notification(
    db: AsyncSession,
    *,
    recipient_id: UUID,
    loan_application_id: UUID,
    application_number: str | None,
    document_type: str,
    description: str,
    requested_by_name: str | None = None,
    channels: Iterable[str] = DEFAULT_CHANNELS,
) -> list[NotificationResult]:
    return await _dispatch(
        db,
        notification_type=NotificationType.DOCUMENT_REQUEST,
        recipient_id=recipient_id,
        loan_application_id=loan_application_id,
        data={
            "application_number": application_number,
            "document_type": document_type,
            "description": description,
            "requested_by_name": requested_by_name,
        },
        channels=channels,
    )


async def send_loan_approval_notification(
    db: AsyncSession,
    *,
    recipient_id: UUID,
    loan_application_id: UUID,
    application_number: str,
    loan_amount: Decimal,
    currency: str,
    channels: Iterable[str] = DEFAULT_CHANNELS,
) -> list[NotificationResult]:
    return await _dispatch(
        db,
        notification_type=NotificationType.LOAN_APPROVAL,
        recipient_id=recipient_id,
        loan_application_id=loan_application_id,
        data={
            "application_number": application_number,
            "loan_amount": str(loan_amount),
            "currency": currency,
        },
        channels=channels,
    )
