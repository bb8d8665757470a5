from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import bad_request, forbidden, not_found, wrap_unexpected
from app.models.document_request import DocumentRequest
from app.models.user import User
from app.schemas.audit_trail import AuditAction, AuditLogParams
from app.schemas.document_requests import (
    REQUESTABLE_DOCUMENT_TYPES,
    DocumentRequestCreate,
    DocumentRequestDTO,
    DocumentRequestFulfill,
    DocumentRequestStatus,
)
from app.services import audit_trail, documents, notifications
from app.services.status import get_application

logger = logging.getLogger(__name__)


async def _get_request(db: AsyncSession, request_id: UUID) -> DocumentRequest:
    stmt = select(DocumentRequest).where(DocumentRequest.id == request_id)
    request = (await db.execute(stmt)).scalar_one_or_none()
    if not request:
        raise not_found("[DOCUMENT_REQUEST_NOT_FOUND] Document request not found")
    return request


@wrap_unexpected("CREATE_DOCUMENT_REQUEST_ERROR", "Failed to create document request")
async def create_document_request(
    db: AsyncSession, actor: User, body: DocumentRequestCreate
) -> DocumentRequestDTO:
    if body.document_type not in REQUESTABLE_DOCUMENT_TYPES:
        raise bad_request(
            f"[INVALID_DOCUMENT_TYPE] Unsupported document type: {body.document_type}",
            details={"supported_types": sorted(REQUESTABLE_DOCUMENT_TYPES)},
        )
    application = await get_application(db, body.loan_application_id)
    recipient_stmt = select(User).where(User.id == body.requested_from, User.deleted_at.is_(None))
    recipient = (await db.execute(recipient_stmt)).scalar_one_or_none()
    if not recipient:
        raise not_found("[USER_NOT_FOUND] Requested user not found")

    request = DocumentRequest(
        loan_application_id=application.id,
        requested_by=actor.id,
        requested_from=recipient.id,
        document_type=body.document_type,
        description=body.description,
        is_required=body.is_required,
        status=DocumentRequestStatus.PENDING.value,
    )
    db.add(request)
    await db.flush()
    await audit_trail.log_action(
        db,
        AuditLogParams(
            loan_application_id=application.id,
            user_id=actor.id,
            action=AuditAction.DOCUMENT_REQUEST_CREATED,
            reason=f"Requested {body.document_type} from {recipient.email}",
            details=body.description,
            metadata={
                "document_request_id": request.id,
                "requested_from": recipient.id,
                "document_type": body.document_type,
                "is_required": body.is_required,
            },
        ),
    )
    await db.commit()
    await audit_trail.invalidate_pending(db)
    await db.refresh(request)

    try:
        await notifications.send_document_request_notification(
            db,
            recipient_id=recipient.id,
            loan_application_id=application.id,
            application_number=application.application_number,
            document_type=body.document_type,
            description=body.description,
            requested_by_name=actor.full_name or None,
        )
    except Exception:
        logger.exception("Document request notification for %s failed", request.id)
    return DocumentRequestDTO.model_validate(request)


@wrap_unexpected("FULFILL_DOCUMENT_REQUEST_ERROR", "Failed to fulfil document request")
async def fulfill_document_request(
    db: AsyncSession, user: User, request_id: UUID, body: DocumentRequestFulfill
) -> DocumentRequestDTO:
    request = await _get_request(db, request_id)
    if request.requested_from != user.id:
        raise forbidden("[FORBIDDEN] Only the requested user can fulfil this document request")
    if request.status == DocumentRequestStatus.FULFILLED.value:
        raise bad_request("[ALREADY_FULFILLED] Document request has already been fulfilled")

    now = datetime.now(timezone.utc)
    saved = await documents.save_personal_documents(
        db,
        user,
        [body.document],
        loan_application_id=request.loan_application_id,
        fulfil_requests=False,
        now=now,
    )
    document = saved[0]
    request.status = DocumentRequestStatus.FULFILLED.value
    request.fulfilled_at = now
    request.fulfilled_with = document.id
    await audit_trail.log_action(
        db,
        AuditLogParams(
            loan_application_id=request.loan_application_id,
            user_id=user.id,
            action=AuditAction.DOCUMENT_REQUEST_FULFILLED,
            reason=f"Document request for {request.document_type} fulfilled",
            metadata={"document_request_id": request.id, "document_id": document.id},
        ),
        now=now,
    )
    await db.commit()
    await audit_trail.invalidate_pending(db)
    await db.refresh(request)
    return DocumentRequestDTO.model_validate(request)


@wrap_unexpected("LIST_DOCUMENT_REQUESTS_ERROR", "Failed to list document requests")
async def list_document_requests(
    db: AsyncSession,
    loan_application_id: UUID,
    *,
    status: str | None = None,
) -> list[DocumentRequestDTO]:
    stmt = select(DocumentRequest).where(DocumentRequest.loan_application_id == loan_application_id)
    if status:
        stmt = stmt.where(DocumentRequest.status == status)
    stmt = stmt.order_by(DocumentRequest.created_at.desc())
    return [DocumentRequestDTO.model_validate(row) for row in (await db.execute(stmt)).scalars().all()]


@wrap_unexpected("LIST_DOCUMENT_REQUESTS_ERROR", "Failed to list document requests")
async def list_for_user(
    db: AsyncSession, user: User, *, status: str | None = None
) -> list[DocumentRequestDTO]:
    stmt = select(DocumentRequest).where(DocumentRequest.requested_from == user.id)
    if status:
        stmt = stmt.where(DocumentRequest.status == status)
    stmt = stmt.order_by(DocumentRequest.created_at.desc())
    return [DocumentRequestDTO.model_validate(row) for row in (await db.execute(stmt)).scalars().all()]
