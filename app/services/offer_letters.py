"""Offer letter lifecycle and DocuSign envelope tracking.

At most one active, non-deleted offer exists per application. New offers take
the next version number across every offer the application ever had.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import bad_request, conflict, internal_error, not_found, wrap_unexpected
from app.core.settings import settings
from app.models.loan_application import LoanApplication
from app.models.offer_letter import OfferLetter
from app.models.user import User
from app.schemas.audit_trail import AuditAction, AuditLogParams
from app.schemas.common import build_pagination
from app.schemas.loan_applications import LoanApplicationStatus, OfferStage
from app.schemas.offer_letters import (
    TERMINAL_OFFER_STATUSES,
    DocuSignStatus,
    DocuSignWebhookResult,
    OfferLetterCreate,
    OfferLetterDTO,
    OfferLetterListQuery,
    OfferLetterListResponse,
    OfferLetterSend,
    OfferLetterStatus,
    OfferLetterUpdate,
    OfferLetterVoid,
)
from app.schemas.snapshots import ApprovalStage
from app.services import audit_trail, snapshots
from app.services import email as email_service
from app.services.audit_trail import diff_values, model_snapshot
from app.services.docusign import DocuSignClient, DocuSignError, get_docusign_client
from app.services.status import get_application
from app.utils.templating import render_template

logger = logging.getLogger(__name__)

FALLBACK_SIGNING_URL = "https://demo.docusign.net/signing/documents/{envelope_id}"

_VOIDABLE_EXCLUDED = TERMINAL_OFFER_STATUSES

# provider envelope status -> (offer status, timestamp column, application offer stage, audit action)
_WEBHOOK_TRANSITIONS: dict[str, tuple[str, str, str | None, AuditAction]] = {
    DocuSignStatus.DELIVERED.value: (
        OfferLetterStatus.DELIVERED.value,
        "delivered_at",
        None,
        AuditAction.OFFER_LETTER_DELIVERED,
    ),
    DocuSignStatus.VIEWED.value: (
        OfferLetterStatus.VIEWED.value,
        "viewed_at",
        None,
        AuditAction.OFFER_LETTER_VIEWED,
    ),
    DocuSignStatus.COMPLETED.value: (
        OfferLetterStatus.SIGNED.value,
        "signed_at",
        OfferStage.OFFER_LETTER_SIGNED.value,
        AuditAction.OFFER_LETTER_SIGNED,
    ),
    DocuSignStatus.DECLINED.value: (
        OfferLetterStatus.DECLINED.value,
        "declined_at",
        OfferStage.OFFER_LETTER_DECLINED.value,
        AuditAction.OFFER_LETTER_DECLINED,
    ),
    DocuSignStatus.VOIDED.value: (
        OfferLetterStatus.VOIDED.value,
        "voided_at",
        None,
        AuditAction.OFFER_LETTER_VOIDED,
    ),
    DocuSignStatus.EXPIRED.value: (
        OfferLetterStatus.EXPIRED.value,
        "expired_at",
        None,
        AuditAction.OFFER_LETTER_EXPIRED,
    ),
}

_STAGE_AUDIT_ACTIONS = {
    OfferStage.OFFER_LETTER_SENT.value: AuditAction.APPLICATION_OFFER_LETTER_SENT,
    OfferStage.OFFER_LETTER_SIGNED.value: AuditAction.APPLICATION_OFFER_LETTER_SIGNED,
    OfferStage.OFFER_LETTER_DECLINED.value: AuditAction.APPLICATION_OFFER_LETTER_DECLINED,
}

# Non-terminal progress order; terminal statuses always win over these
_PROGRESS_RANK = {
    OfferLetterStatus.DRAFT.value: 0,
    OfferLetterStatus.SENT.value: 1,
    OfferLetterStatus.DELIVERED.value: 2,
    OfferLetterStatus.VIEWED.value: 3,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_offer_number(now: datetime | None = None) -> str:
    year = (now or _utcnow()).year
    return f"OFFER-{year}-{secrets.randbelow(1_000_000):06d}"


def _to_dto(offer: OfferLetter) -> OfferLetterDTO:
    return OfferLetterDTO.model_validate(offer)


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        audit_trail.discard_pending(db)
        raise conflict(
            "[OFFER_LETTER_CONFLICT] Offer letter was modified by another request; reload and retry"
        ) from exc
    await audit_trail.invalidate_pending(db)


async def _get_offer(db: AsyncSession, offer_id: UUID) -> OfferLetter:
    stmt = select(OfferLetter).where(OfferLetter.id == offer_id, OfferLetter.deleted_at.is_(None))
    offer = (await db.execute(stmt)).scalar_one_or_none()
    if not offer:
        raise not_found("[OFFER_LETTER_NOT_FOUND] Offer letter not found")
    return offer


def _require_draft(offer: OfferLetter, action: str) -> None:
    if offer.status != OfferLetterStatus.DRAFT.value:
        raise bad_request(
            f"[INVALID_STATUS] Only draft offer letters can be {action}",
            details={"current_status": offer.status},
        )


@wrap_unexpected("CREATE_OFFER_LETTER_ERROR", "Failed to create offer letter")
async def create(db: AsyncSession, body: OfferLetterCreate, actor: User) -> OfferLetterDTO:
    application = await get_application(db, body.loan_application_id)
    if application.status != LoanApplicationStatus.APPROVED.value:
        raise bad_request(
            "[INVALID_STATUS] Offer letters can only be created for approved loan applications",
            details={"current_status": application.status},
        )

    stmt = select(OfferLetter).where(OfferLetter.loan_application_id == application.id)
    existing = list((await db.execute(stmt)).scalars().all())
    if any(offer.is_active and offer.deleted_at is None for offer in existing):
        raise bad_request(
            "[ACTIVE_OFFER_EXISTS] An active offer letter already exists for this loan application"
        )
    next_version = max((offer.version or 0 for offer in existing), default=0) + 1

    now = _utcnow()
    offer = OfferLetter(
        loan_application_id=application.id,
        offer_number=generate_offer_number(now),
        version=next_version,
        offer_amount=body.offer_amount,
        offer_term=body.offer_term,
        interest_rate=body.interest_rate,
        currency=body.currency.upper(),
        special_conditions=body.special_conditions,
        requires_guarantor=body.requires_guarantor,
        requires_collateral=body.requires_collateral,
        recipient_email=str(body.recipient_email),
        recipient_name=body.recipient_name,
        status=OfferLetterStatus.DRAFT.value,
        docusign_status=DocuSignStatus.NOT_SENT.value,
        expires_at=body.expires_at or now + timedelta(days=settings.offer_letter_default_expiry_days),
        is_active=True,
        created_by=actor.id,
        notes=body.notes,
    )
    db.add(offer)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise bad_request(
            "[ACTIVE_OFFER_EXISTS] An active offer letter already exists for this loan application"
        ) from exc

    await audit_trail.log_action(
        db,
        AuditLogParams(
            loan_application_id=application.id,
            user_id=actor.id,
            action=AuditAction.OFFER_LETTER_CREATED,
            reason=f"Offer letter {offer.offer_number} created",
            details=f"Offer letter version {next_version} drafted",
            metadata={"offer_letter_id": offer.id, "version": next_version},
            after_data=model_snapshot(offer),
        ),
    )
    await _commit(db)
    await db.refresh(offer)
    logger.info("Offer letter %s v%s created for application %s", offer.id, next_version, application.id)
    return _to_dto(offer)


@wrap_unexpected("GET_OFFER_LETTER_ERROR", "Failed to get offer letter")
async def get(db: AsyncSession, offer_id: UUID) -> OfferLetterDTO:
    return _to_dto(await _get_offer(db, offer_id))


@wrap_unexpected("LIST_OFFER_LETTERS_ERROR", "Failed to list offer letters")
async def list_offer_letters(db: AsyncSession, query: OfferLetterListQuery) -> OfferLetterListResponse:
    conditions: list[Any] = [OfferLetter.deleted_at.is_(None)]
    if query.status:
        conditions.append(OfferLetter.status == query.status)
    if query.docusign_status:
        conditions.append(OfferLetter.docusign_status == query.docusign_status)
    if query.loan_application_id:
        conditions.append(OfferLetter.loan_application_id == query.loan_application_id)
    if query.is_active is not None:
        conditions.append(OfferLetter.is_active.is_(query.is_active))
    if query.expires_before:
        conditions.append(OfferLetter.expires_at < query.expires_before)

    count_stmt = select(func.count()).select_from(OfferLetter).where(*conditions)
    total = int((await db.execute(count_stmt)).scalar_one() or 0)

    stmt = (
        select(OfferLetter)
        .where(*conditions)
        .order_by(OfferLetter.created_at.desc())
        .limit(query.limit)
        .offset((query.page - 1) * query.limit)
    )
    offers = (await db.execute(stmt)).scalars().all()
    return OfferLetterListResponse(
        items=[_to_dto(offer) for offer in offers],
        pagination=build_pagination(query.page, query.limit, total),
    )


@wrap_unexpected("GET_EXPIRING_OFFER_LETTERS_ERROR", "Failed to get expiring offer letters")
async def get_expiring(
    db: AsyncSession, hours: int = 24, *, now: datetime | None = None
) -> list[OfferLetterDTO]:
    """Sent, active offers whose expiry falls inside the next ``hours``."""
    now = now or _utcnow()
    stmt = (
        select(OfferLetter)
        .where(
            OfferLetter.deleted_at.is_(None),
            OfferLetter.is_active.is_(True),
            OfferLetter.status == OfferLetterStatus.SENT.value,
            OfferLetter.expires_at > now,
            OfferLetter.expires_at <= now + timedelta(hours=hours),
        )
        .order_by(OfferLetter.expires_at.asc())
    )
    return [_to_dto(offer) for offer in (await db.execute(stmt)).scalars().all()]


@wrap_unexpected("UPDATE_OFFER_LETTER_ERROR", "Failed to update offer letter")
async def update(
    db: AsyncSession, offer_id: UUID, body: OfferLetterUpdate, actor: User
) -> OfferLetterDTO:
    offer = await _get_offer(db, offer_id)
    _require_draft(offer, "updated")

    data = body.model_dump(exclude_unset=True)
    if not data:
        return _to_dto(offer)
    if data.get("currency"):
        data["currency"] = data["currency"].upper()
    if data.get("recipient_email") is not None:
        data["recipient_email"] = str(data["recipient_email"])

    before = model_snapshot(offer)
    for field, value in data.items():
        setattr(offer, field, value)
    after = model_snapshot(offer)

    await audit_trail.log_action(
        db,
        AuditLogParams(
            loan_application_id=offer.loan_application_id,
            user_id=actor.id,
            action=AuditAction.OFFER_LETTER_UPDATED,
            reason=f"Offer letter {offer.offer_number} updated",
            metadata={"offer_letter_id": offer.id, "changes": diff_values(before, after)},
            before_data=before,
            after_data=after,
        ),
    )
    await _commit(db)
    await db.refresh(offer)
    return _to_dto(offer)


@wrap_unexpected("DELETE_OFFER_LETTER_ERROR", "Failed to delete offer letter")
async def remove(db: AsyncSession, offer_id: UUID, actor: User) -> None:
    offer = await _get_offer(db, offer_id)
    _require_draft(offer, "deleted")

    offer.deleted_at = _utcnow()
    offer.is_active = False
    await audit_trail.log_action(
        db,
        AuditLogParams(
            loan_application_id=offer.loan_application_id,
            user_id=actor.id,
            action=AuditAction.OFFER_LETTER_DELETED,
            reason=f"Offer letter {offer.offer_number} deleted",
            metadata={"offer_letter_id": offer.id},
        ),
    )
    await _commit(db)


def _render_offer_document(offer: OfferLetter, application: LoanApplication, now: datetime) -> str:
    return render_template(
        "documents/offer_letter.html",
        {
            "offer_number": offer.offer_number,
            "version": offer.version,
            "application_number": application.application_number,
            "issued_on": now,
            "recipient_name": offer.recipient_name,
            "offer_amount": offer.offer_amount,
            "currency": offer.currency,
            "offer_term": offer.offer_term,
            "interest_rate": offer.interest_rate,
            "requires_guarantor": offer.requires_guarantor,
            "requires_collateral": offer.requires_collateral,
            "special_conditions": offer.special_conditions,
            "expires_at": offer.expires_at,
        },
    )


async def _email_offer(offer: OfferLetter, body: OfferLetterSend, signing_url: str) -> None:
    try:
        html = render_template(
            "email/offer_letter_sent.html",
            {
                "recipient_name": offer.recipient_name,
                "offer_number": offer.offer_number,
                "offer_amount": offer.offer_amount,
                "currency": offer.currency,
                "offer_term": offer.offer_term,
                "email_message": body.email_message,
                "signing_url": signing_url,
                "expires_at": offer.expires_at,
            },
        )
        result = await email_service.send_email(
            offer.recipient_email,
            body.email_subject or f"Your loan offer {offer.offer_number} is ready to sign",
            html,
        )
        if not result.success:
            logger.warning("Offer letter email for %s not delivered: %s", offer.id, result.error)
    except Exception:
        logger.exception("Offer letter email for %s failed", offer.id)


async def _void_unrecorded_envelope(client: DocuSignClient, envelope_id: str, offer_id: UUID) -> None:
    """Pull back an envelope whose send could not be stored; a retry creates a fresh one."""
    try:
        await client.void_envelope(envelope_id, "Offer letter send could not be recorded")
    except DocuSignError:
        logger.exception(
            "Could not void unrecorded envelope %s for offer letter %s",
            envelope_id,
            offer_id,
            extra={"offer_letter_id": str(offer_id), "envelope_id": envelope_id},
        )
    else:
        logger.warning(
            "Voided envelope %s after offer letter %s failed to save",
            envelope_id,
            offer_id,
            extra={"offer_letter_id": str(offer_id), "envelope_id": envelope_id},
        )


@wrap_unexpected("SEND_OFFER_LETTER_ERROR", "Failed to send offer letter for signature")
async def send(
    db: AsyncSession,
    offer_id: UUID,
    body: OfferLetterSend,
    actor: User,
    *,
    client: DocuSignClient | None = None,
) -> OfferLetterDTO:
    offer = await _get_offer(db, offer_id)
    _require_draft(offer, "sent")
    application = await get_application(db, offer.loan_application_id)
    client = client or get_docusign_client()
    now = _utcnow()

    client_user_id = str(application.user_id)
    try:
        envelope_id = await client.create_and_send_envelope(
            document_html=_render_offer_document(offer, application, now),
            document_name=f"Offer Letter {offer.offer_number}",
            email_subject=body.email_subject or f"Loan offer {offer.offer_number}",
            signer_email=offer.recipient_email,
            signer_name=offer.recipient_name,
            client_user_id=client_user_id,
            email_blurb=body.email_message,
        )
    except DocuSignError as exc:
        logger.exception(
            "DocuSign envelope creation failed for offer letter %s",
            offer.id,
            extra={"offer_letter_id": str(offer.id), "loan_application_id": str(application.id)},
        )
        raise internal_error("[SEND_OFFER_LETTER_ERROR] Failed to send offer letter for signature") from exc

    try:
        signing_url = await client.create_recipient_view(
            envelope_id,
            signer_email=offer.recipient_email,
            signer_name=offer.recipient_name,
            client_user_id=client_user_id,
        )
    except DocuSignError:
        logger.warning("Signing view unavailable for envelope %s; using fallback url", envelope_id)
        signing_url = FALLBACK_SIGNING_URL.format(envelope_id=envelope_id)

    try:
        offer.status = OfferLetterStatus.SENT.value
        offer.docusign_status = DocuSignStatus.SENT.value
        offer.docusign_envelope_id = envelope_id
        offer.offer_letter_url = signing_url
        offer.sent_at = now
        application.offer_stage = OfferStage.OFFER_LETTER_SENT.value

        await audit_trail.log_actions(
            db,
            [
                AuditLogParams(
                    loan_application_id=application.id,
                    user_id=actor.id,
                    action=AuditAction.OFFER_LETTER_SENT,
                    reason=f"Offer letter {offer.offer_number} sent for signature",
                    details=f"Sent to {offer.recipient_email}",
                    metadata={"offer_letter_id": offer.id, "envelope_id": envelope_id},
                ),
                AuditLogParams(
                    loan_application_id=application.id,
                    user_id=actor.id,
                    action=AuditAction.APPLICATION_OFFER_LETTER_SENT,
                    reason="Offer letter sent to applicant",
                    metadata={"offer_letter_id": offer.id, "offer_stage": OfferStage.OFFER_LETTER_SENT.value},
                ),
            ],
            now=now,
        )
        await _commit(db)
    except Exception:
        await _void_unrecorded_envelope(client, envelope_id, offer_id)
        raise
    await _email_offer(offer, body, signing_url)
    await db.refresh(offer)
    return _to_dto(offer)


@wrap_unexpected("VOID_OFFER_LETTER_ERROR", "Failed to void offer letter")
async def void(
    db: AsyncSession,
    offer_id: UUID,
    body: OfferLetterVoid,
    actor: User,
    *,
    client: DocuSignClient | None = None,
) -> OfferLetterDTO:
    offer = await _get_offer(db, offer_id)
    if offer.status in _VOIDABLE_EXCLUDED:
        raise bad_request(
            f"[INVALID_STATUS] Cannot void an offer letter that is {offer.status}",
            details={"current_status": offer.status},
        )

    if offer.docusign_envelope_id:
        client = client or get_docusign_client()
        try:
            await client.void_envelope(offer.docusign_envelope_id, body.reason)
        except DocuSignError:
            logger.warning("DocuSign void failed for envelope %s", offer.docusign_envelope_id)

    now = _utcnow()
    previous_status = offer.status
    offer.status = OfferLetterStatus.VOIDED.value
    offer.docusign_status = DocuSignStatus.VOIDED.value
    offer.voided_at = now
    offer.is_active = False
    await audit_trail.log_action(
        db,
        AuditLogParams(
            loan_application_id=offer.loan_application_id,
            user_id=actor.id,
            action=AuditAction.OFFER_LETTER_VOIDED,
            reason=body.reason,
            details=f"Offer letter {offer.offer_number} voided",
            metadata={"offer_letter_id": offer.id, "previous_status": previous_status},
        ),
        now=now,
    )
    await _commit(db)
    await db.refresh(offer)
    return _to_dto(offer)


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_docusign_event(payload: dict[str, Any]) -> tuple[str, str, str, datetime | None]:
    """Return ``(event, envelope_id, envelope_status, changed_at)`` from a Connect payload.

    Accepts both the ``data.envelopeSummary`` shape and the flat ``data`` shape.
    """
    event = payload.get("event")
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        data = {}
    summary = data.get("envelopeSummary") if isinstance(data.get("envelopeSummary"), dict) else {}

    envelope_id = summary.get("envelopeId") or data.get("envelopeId")
    envelope_status = summary.get("status") or data.get("status")
    changed_at = summary.get("statusChangedDateTime") or data.get("statusChangedDateTime")

    if not event or not envelope_id:
        raise bad_request("[INVALID_WEBHOOK_PAYLOAD] Webhook payload is missing event or envelope information")
    if not envelope_status and isinstance(event, str) and event.startswith("envelope-"):
        envelope_status = event[len("envelope-"):]
    if not envelope_status:
        raise bad_request("[INVALID_WEBHOOK_PAYLOAD] Webhook payload is missing envelope status")
    return event, envelope_id, str(envelope_status).lower(), _parse_timestamp(changed_at)


@wrap_unexpected("DOCUSIGN_WEBHOOK_ERROR", "Failed to process DocuSign webhook")
async def handle_docusign_webhook(
    db: AsyncSession,
    payload: dict[str, Any],
    *,
    now: datetime | None = None,
) -> DocuSignWebhookResult:
    event, envelope_id, envelope_status, changed_at = parse_docusign_event(payload)
    now = now or _utcnow()

    stmt = select(OfferLetter).where(OfferLetter.docusign_envelope_id == envelope_id)
    offer = (await db.execute(stmt)).scalar_one_or_none()
    if not offer:
        logger.info("DocuSign event %s for unknown envelope %s", event, envelope_id)
        return DocuSignWebhookResult(success=True, message="Webhook processed (envelope not found)")

    if offer.status in TERMINAL_OFFER_STATUSES:
        return DocuSignWebhookResult(
            success=True,
            message=f"Webhook processed (offer letter already {offer.status})",
            offer_letter_id=offer.id,
            status=offer.status,
        )

    transition = _WEBHOOK_TRANSITIONS.get(envelope_status)
    if transition is None:
        return DocuSignWebhookResult(
            success=True,
            message=f"Webhook processed (status {envelope_status} ignored)",
            offer_letter_id=offer.id,
            status=offer.status,
        )
    offer_status, timestamp_field, offer_stage, offer_action = transition
    if offer_status in _PROGRESS_RANK and _PROGRESS_RANK[offer_status] <= _PROGRESS_RANK.get(offer.status, 0):
        logger.info(
            "Ignoring out-of-order DocuSign event %s for offer letter %s (already %s)",
            event,
            offer.id,
            offer.status,
            extra={"offer_letter_id": str(offer.id), "envelope_id": envelope_id},
        )
        return DocuSignWebhookResult(
            success=True,
            message=f"Webhook processed (offer letter already {offer.status})",
            offer_letter_id=offer.id,
            status=offer.status,
        )

    application = await get_application(db, offer.loan_application_id)
    actor_id = offer.created_by or application.user_id
    occurred_at = changed_at or now
    previous_status = offer.status

    offer.status = offer_status
    offer.docusign_status = envelope_status
    setattr(offer, timestamp_field, occurred_at)
    if offer_status in TERMINAL_OFFER_STATUSES:
        offer.is_active = offer_status == OfferLetterStatus.SIGNED.value

    metadata = {
        "offer_letter_id": offer.id,
        "envelope_id": envelope_id,
        "event": event,
        "previous_status": previous_status,
        "source": "docusign_webhook",
    }
    audits = [
        AuditLogParams(
            loan_application_id=application.id,
            user_id=actor_id,
            action=offer_action,
            reason=f"Offer letter {offer.offer_number} {offer_status}",
            details=f"DocuSign envelope {envelope_id} reported {envelope_status}",
            metadata=metadata,
        )
    ]
    if offer_stage:
        application.offer_stage = offer_stage
        audits.append(
            AuditLogParams(
                loan_application_id=application.id,
                user_id=actor_id,
                action=_STAGE_AUDIT_ACTIONS[offer_stage],
                reason=f"Application offer stage moved to {offer_stage}",
                metadata={**metadata, "offer_stage": offer_stage},
            )
        )
    await audit_trail.log_actions(db, audits, now=now)

    if offer_stage == OfferStage.OFFER_LETTER_SIGNED.value:
        await snapshots.create_snapshot(
            db,
            application.id,
            actor_id,
            ApprovalStage.OFFER_LETTER_SIGNED.value,
            application=application,
            now=now,
        )
        await audit_trail.log_action(
            db,
            AuditLogParams(
                loan_application_id=application.id,
                user_id=actor_id,
                action=AuditAction.SNAPSHOT_CREATED,
                reason="Immutable snapshot created at offer letter signing",
                details="Complete application state captured for audit trail",
                metadata={
                    "approval_stage": ApprovalStage.OFFER_LETTER_SIGNED.value,
                    "triggered_by": "docusign_webhook",
                },
            ),
            now=now,
        )

    await _commit(db)
    logger.info(
        "Offer letter %s moved %s -> %s via DocuSign",
        offer.id,
        previous_status,
        offer_status,
        extra={"offer_letter_id": str(offer.id), "envelope_id": envelope_id},
    )
    return DocuSignWebhookResult(
        success=True,
        message="Webhook processed",
        offer_letter_id=offer.id,
        status=offer_status,
    )
