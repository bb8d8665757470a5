"""Loan application status state machine.

``update_status`` writes the new status, its audit entry and (on approval) the
snapshot in one transaction, then notifies the applicant after commit.
Notification failures are logged and never undo the transition.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import ServiceError, bad_request, conflict, internal_error, not_found, wrap_unexpected
from app.models.application_audit_trail import ApplicationAuditTrail
from app.models.loan_application import LoanApplication
from app.models.user import User
from app.schemas.audit_trail import STATUS_CHANGE_ACTIONS, AuditAction, AuditLogParams
from app.schemas.loan_applications import LoanApplicationStatus, OfferStage
from app.schemas.notifications import NotificationChannel
from app.schemas.snapshots import ApprovalStage
from app.schemas.status import (
    StatusDTO,
    StatusHistoryEntry,
    StatusUpdateResult,
    TransitionValidation,
)
from app.services import audit_trail, notifications, snapshots

logger = logging.getLogger(__name__)

StatusNotifier = Callable[..., Awaitable[Any]]

_S = LoanApplicationStatus

TRANSITIONS: dict[str, tuple[str, ...]] = {
    _S.DRAFT.value: (_S.SUBMITTED.value, _S.WITHDRAWN.value),
    _S.SUBMITTED.value: (_S.UNDER_REVIEW.value, _S.WITHDRAWN.value),
    _S.UNDER_REVIEW.value: (_S.APPROVED.value, _S.REJECTED.value, _S.WITHDRAWN.value),
    _S.APPROVED.value: (_S.DISBURSED.value, _S.WITHDRAWN.value),
    _S.REJECTED.value: (_S.SUBMITTED.value, _S.WITHDRAWN.value),
    _S.WITHDRAWN.value: (),
    _S.DISBURSED.value: (),
}

STAGE_TIMESTAMPS: dict[str, str] = {
    _S.SUBMITTED.value: "submitted_at",
    _S.UNDER_REVIEW.value: "reviewed_at",
    _S.APPROVED.value: "approved_at",
    _S.REJECTED.value: "rejected_at",
    _S.DISBURSED.value: "disbursed_at",
}

UNKNOWN_USER_NAME = "Unknown User"
UNKNOWN_USER_EMAIL = "unknown@example.com"


def get_all_statuses() -> list[str]:
    return [status.value for status in LoanApplicationStatus]


def get_allowed_transitions(status: str) -> list[str]:
    return list(TRANSITIONS.get(status, ()))


def is_terminal_status(status: str) -> bool:
    return status in TRANSITIONS and not TRANSITIONS[status]


def validate_transition(current: str, requested: str) -> TransitionValidation:
    allowed = get_allowed_transitions(current)
    if current not in TRANSITIONS:
        return TransitionValidation(
            is_valid=False,
            allowed_transitions=allowed,
            error=f"Unknown current status: {current}",
        )
    if requested in allowed:
        return TransitionValidation(is_valid=True, allowed_transitions=allowed)
    if is_terminal_status(current):
        error = f"Cannot change status of a {current} application"
    else:
        error = f"Invalid status transition from {current} to {requested}"
    return TransitionValidation(is_valid=False, allowed_transitions=allowed, error=error)


def _coerce_status(value: LoanApplicationStatus | str) -> str:
    try:
        return LoanApplicationStatus(value).value
    except ValueError as exc:
        raise bad_request(
            f"[INVALID_STATUS] Unknown loan application status: {value}",
            details={"valid_statuses": get_all_statuses()},
        ) from exc


async def get_application(db: AsyncSession, loan_application_id: UUID) -> LoanApplication:
    stmt = select(LoanApplication).where(
        LoanApplication.id == loan_application_id,
        LoanApplication.deleted_at.is_(None),
    )
    application = (await db.execute(stmt)).scalar_one_or_none()
    if not application:
        raise not_found("[LOAN_APPLICATION_NOT_FOUND] Loan application not found")
    return application


async def _get_actor(db: AsyncSession, user_id: UUID) -> User:
    stmt = select(User).where(User.id == user_id, User.deleted_at.is_(None))
    actor = (await db.execute(stmt)).scalar_one_or_none()
    if not actor:
        raise not_found("[USER_NOT_FOUND] User not found")
    return actor


def _apply_status(
    application: LoanApplication,
    new_status: str,
    *,
    actor_id: UUID,
    status_reason: str,
    rejection_reason: str | None,
    now: datetime,
) -> dict[str, Any]:
    changes: dict[str, Any] = {
        "status": new_status,
        "status_reason": status_reason,
        "last_updated_by": actor_id,
        "last_updated_at": now,
    }
    stage_field = STAGE_TIMESTAMPS.get(new_status)
    if stage_field:
        changes[stage_field] = now
    if new_status == _S.REJECTED.value:
        changes["rejection_reason"] = rejection_reason
    for field, value in changes.items():
        setattr(application, field, value)
    return changes


async def _notify(
    db: AsyncSession,
    notifier: StatusNotifier,
    application: LoanApplication,
    *,
    previous_status: str,
    new_status: str,
    reason: str,
) -> None:
    try:
        results = await notifier(
            db,
            recipient_id=application.user_id,
            loan_application_id=application.id,
            application_number=application.application_number,
            previous_status=previous_status,
            new_status=new_status,
            reason=reason,
            channels=(NotificationChannel.EMAIL.value,),
        )
    except Exception:
        logger.exception("Status notification failed for loan application %s", application.id)
        return
    for result in results or []:
        if not getattr(result, "success", False):
            logger.warning(
                "Status notification via %s for loan application %s not delivered: %s",
                getattr(result, "channel", "?"),
                application.id,
                getattr(result, "error", None),
            )


async def update_status(
    db: AsyncSession,
    loan_application_id: UUID,
    new_status: LoanApplicationStatus | str,
    actor_user_id: UUID,
    *,
    reason: str | None = None,
    rejection_reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
    notifier: StatusNotifier | None = None,
) -> StatusUpdateResult:
    new_status = _coerce_status(new_status)
    now = now or datetime.now(timezone.utc)
    notifier = notifier or notifications.send_status_update_notification

    try:
        application = await get_application(db, loan_application_id)
        actor = await _get_actor(db, actor_user_id)

        previous_status = application.status
        validation = validate_transition(previous_status, new_status)
        if not validation.is_valid:
            raise bad_request(
                f"[INVALID_STATUS_TRANSITION] {validation.error}",
                details={
                    "current_status": previous_status,
                    "requested_status": new_status,
                    "allowed_transitions": validation.allowed_transitions,
                },
            )

        before = {"status": previous_status, "status_reason": application.status_reason}
        status_reason = reason or f"Status updated to {new_status}"
        changes = _apply_status(
            application,
            new_status,
            actor_id=actor.id,
            status_reason=status_reason,
            rejection_reason=rejection_reason,
            now=now,
        )
        db.add(application)

        entry = await audit_trail.log_action(
            db,
            AuditLogParams(
                loan_application_id=application.id,
                user_id=actor.id,
                action=AuditAction.for_status(new_status),
                reason=reason or f"Application status updated to {new_status}",
                details=rejection_reason or f"Status changed from {previous_status} to {new_status}",
                metadata={
                    "previous_status": previous_status,
                    "new_status": new_status,
                    "rejection_reason": rejection_reason,
                    **(metadata or {}),
                },
                before_data=before,
                after_data=changes,
            ),
            now=now,
        )

        snapshot_created = False
        if new_status == _S.APPROVED.value:
            await snapshots.create_snapshot(
                db,
                application.id,
                actor.id,
                ApprovalStage.LOAN_APPROVED.value,
                application=application,
                now=now,
            )
            await audit_trail.log_action(
                db,
                AuditLogParams(
                    loan_application_id=application.id,
                    user_id=actor.id,
                    action=AuditAction.SNAPSHOT_CREATED,
                    reason="Immutable snapshot created at loan approval",
                    details="Complete application state captured for audit trail",
                    metadata={
                        "approval_stage": ApprovalStage.LOAN_APPROVED.value,
                        "triggered_by": "status_update",
                    },
                ),
                now=now,
            )
            snapshot_created = True

        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        audit_trail.discard_pending(db)
        raise conflict(
            "[STATUS_UPDATE_CONFLICT] Loan application was modified by another request; reload and retry"
        ) from exc
    except ServiceError:
        await db.rollback()
        audit_trail.discard_pending(db)
        raise
    except Exception as exc:
        await db.rollback()
        audit_trail.discard_pending(db)
        logger.exception("Failed to update status for loan application %s", loan_application_id)
        raise internal_error("[UPDATE_STATUS_ERROR] Failed to update loan application status") from exc

    await audit_trail.invalidate_pending(db)
    logger.info(
        "Loan application %s moved %s -> %s by %s",
        application.id,
        previous_status,
        new_status,
        actor.id,
        extra={"loan_application_id": str(application.id)},
    )
    await _notify(
        db,
        notifier,
        application,
        previous_status=previous_status,
        new_status=new_status,
        reason=status_reason,
    )

    return StatusUpdateResult(
        success=True,
        previous_status=previous_status,
        new_status=new_status,
        message=f"Status successfully updated from {previous_status} to {new_status}",
        snapshot_created=snapshot_created,
        audit_entry_id=entry.id,
    )


@wrap_unexpected("GET_STATUS_ERROR", "Failed to get loan application status")
async def get_status(db: AsyncSession, loan_application_id: UUID) -> StatusDTO:
    application = await get_application(db, loan_application_id)
    return StatusDTO(
        status=application.status,
        status_reason=application.status_reason,
        last_updated_by=application.last_updated_by,
        last_updated_at=application.last_updated_at,
        offer_stage=application.offer_stage or OfferStage.NONE.value,
        allowed_transitions=get_allowed_transitions(application.status),
        is_terminal=is_terminal_status(application.status),
    )


@wrap_unexpected("GET_STATUS_HISTORY_ERROR", "Failed to get status history")
async def get_status_history(db: AsyncSession, loan_application_id: UUID) -> list[StatusHistoryEntry]:
    """Status-change entries only, oldest first; other audit actions are skipped."""
    stmt = (
        select(ApplicationAuditTrail, User)
        .outerjoin(User, User.id == ApplicationAuditTrail.user_id)
        .where(
            ApplicationAuditTrail.loan_application_id == loan_application_id,
            ApplicationAuditTrail.action.in_([action.value for action in STATUS_CHANGE_ACTIONS]),
        )
        .order_by(ApplicationAuditTrail.created_at.asc())
    )
    rows = (await db.execute(stmt)).all()

    history: list[StatusHistoryEntry] = []
    for entry, user in rows:
        action = AuditAction(entry.action)
        if not action.is_status_change:
            continue
        history.append(
            StatusHistoryEntry(
                id=entry.id,
                status=action.status,
                reason=entry.reason,
                details=entry.details,
                user_id=entry.user_id,
                user_name=(user.full_name if user else "") or UNKNOWN_USER_NAME,
                user_email=user.email if user else UNKNOWN_USER_EMAIL,
                created_at=entry.created_at,
                metadata=entry.metadata_,
            )
        )
    return history
