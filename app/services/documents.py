"""Personal and business document upserts.

Documents are keyed by type (business documents also by year and bank), so an
upload replaces the active row of the same key instead of stacking copies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import wrap_unexpected
from app.models.business_document import BusinessDocument
from app.models.document_request import DocumentRequest
from app.models.personal_document import PersonalDocument
from app.models.user import User
from app.schemas.audit_trail import AuditAction, AuditLogParams
from app.schemas.document_requests import DocumentRequestStatus
from app.schemas.documents import (
    BusinessDocumentDTO,
    BusinessDocumentInput,
    PersonalDocumentDTO,
    PersonalDocumentInput,
)
from app.services import audit_trail
from app.services.business import get_owned_business

logger = logging.getLogger(__name__)


async def _fulfil_pending_requests(
    db: AsyncSession,
    user: User,
    document: PersonalDocument,
    now: datetime,
) -> list[DocumentRequest]:
    stmt = select(DocumentRequest).where(
        DocumentRequest.requested_from == user.id,
        DocumentRequest.document_type == document.doc_type,
        DocumentRequest.status == DocumentRequestStatus.PENDING.value,
    )
    pending = list((await db.execute(stmt)).scalars().all())
    for request in pending:
        request.status = DocumentRequestStatus.FULFILLED.value
        request.fulfilled_at = now
        request.fulfilled_with = document.id
        await audit_trail.log_action(
            db,
            AuditLogParams(
                loan_application_id=request.loan_application_id,
                user_id=user.id,
                action=AuditAction.DOCUMENT_REQUEST_FULFILLED,
                reason=f"Document request for {request.document_type} fulfilled by upload",
                metadata={
                    "document_request_id": request.id,
                    "document_id": document.id,
                    "auto_fulfilled": True,
                },
            ),
            now=now,
        )
    return pending


async def save_personal_documents(
    db: AsyncSession,
    user: User,
    docs: list[PersonalDocumentInput],
    *,
    loan_application_id: UUID | None = None,
    fulfil_requests: bool = True,
    now: datetime | None = None,
) -> list[PersonalDocument]:
    """Upsert without committing; the caller owns the transaction."""
    now = now or datetime.now(timezone.utc)
    by_type: dict[str, str] = {}
    for doc in docs:
        by_type[doc.doc_type] = doc.doc_url

    stmt = select(PersonalDocument).where(
        PersonalDocument.user_id == user.id,
        PersonalDocument.doc_type.in_(list(by_type)),
        PersonalDocument.deleted_at.is_(None),
    )
    existing = {row.doc_type: row for row in (await db.execute(stmt)).scalars().all()}

    saved: list[PersonalDocument] = []
    audits: list[AuditLogParams] = []
    for doc_type, doc_url in by_type.items():
        row = existing.get(doc_type)
        if row is not None:
            previous_url = row.doc_url
            row.doc_url = doc_url
            action, operation = AuditAction.DOCUMENTS_UPDATED, "updated"
            before = {"doc_type": doc_type, "doc_url": previous_url}
        else:
            row = PersonalDocument(user_id=user.id, doc_type=doc_type, doc_url=doc_url)
            db.add(row)
            action, operation = AuditAction.DOCUMENTS_UPLOADED, "uploaded"
            before = None
        saved.append(row)
        if loan_application_id:
            audits.append(
                AuditLogParams(
                    loan_application_id=loan_application_id,
                    user_id=user.id,
                    action=action,
                    reason=f"Personal document {operation}",
                    details=f"Personal document {doc_type} {operation}",
                    metadata={"document_type": doc_type, "operation": operation},
                    before_data=before,
                    after_data={"doc_type": doc_type, "doc_url": doc_url},
                )
            )
    await db.flush()

    for params in audits:
        await audit_trail.log_action(db, params, now=now)
    if fulfil_requests:
        for row in saved:
            await _fulfil_pending_requests(db, user, row, now)
    return saved


@wrap_unexpected("UPSERT_DOCUMENTS_ERROR", "Failed to save documents")
async def upsert_personal_documents(
    db: AsyncSession,
    user: User,
    docs: list[PersonalDocumentInput],
    *,
    loan_application_id: UUID | None = None,
) -> list[PersonalDocumentDTO]:
    saved = await save_personal_documents(db, user, docs, loan_application_id=loan_application_id)
    await db.commit()
    await audit_trail.invalidate_pending(db)
    for row in saved:
        await db.refresh(row)
    logger.info("Saved %d personal documents for user %s", len(saved), user.id)
    return [PersonalDocumentDTO.model_validate(row) for row in saved]


@wrap_unexpected("LIST_DOCUMENTS_ERROR", "Failed to list documents")
async def list_personal_documents(db: AsyncSession, user: User) -> list[PersonalDocumentDTO]:
    stmt = (
        select(PersonalDocument)
        .where(PersonalDocument.user_id == user.id, PersonalDocument.deleted_at.is_(None))
        .order_by(PersonalDocument.doc_type.asc())
    )
    return [PersonalDocumentDTO.model_validate(row) for row in (await db.execute(stmt)).scalars().all()]


def _business_key(doc_type: str, doc_year: int | None, doc_bank_name: str | None) -> tuple:
    return doc_type, doc_year, (doc_bank_name or "").strip().lower() or None


@wrap_unexpected("UPSERT_DOCUMENTS_ERROR", "Failed to save business documents")
async def upsert_business_documents(
    db: AsyncSession,
    user: User,
    business_id: UUID,
    docs: list[BusinessDocumentInput],
) -> list[BusinessDocumentDTO]:
    business = await get_owned_business(db, user, business_id)

    by_key: dict[tuple, BusinessDocumentInput] = {}
    for doc in docs:
        by_key[_business_key(doc.doc_type, doc.doc_year, doc.doc_bank_name)] = doc

    stmt = select(BusinessDocument).where(
        BusinessDocument.business_id == business.id,
        BusinessDocument.doc_type.in_(sorted({key[0] for key in by_key})),
        BusinessDocument.deleted_at.is_(None),
    )
    existing = {
        _business_key(row.doc_type, row.doc_year, row.doc_bank_name): row
        for row in (await db.execute(stmt)).scalars().all()
    }

    saved: list[BusinessDocument] = []
    for key, doc in by_key.items():
        values = {
            "doc_url": doc.doc_url,
            "is_password_protected": doc.is_password_protected,
            "doc_password": doc.doc_password if doc.is_password_protected else None,
            "doc_bank_name": doc.doc_bank_name,
            "doc_year": doc.doc_year,
        }
        row = existing.get(key)
        if row is None:
            row = BusinessDocument(business_id=business.id, doc_type=doc.doc_type, **values)
            db.add(row)
        else:
            for field, value in values.items():
                setattr(row, field, value)
        saved.append(row)

    await db.commit()
    for row in saved:
        await db.refresh(row)
    return [BusinessDocumentDTO.model_validate(row) for row in saved]


@wrap_unexpected("LIST_DOCUMENTS_ERROR", "Failed to list business documents")
async def list_business_documents(
    db: AsyncSession, user: User, business_id: UUID
) -> list[BusinessDocumentDTO]:
    business = await get_owned_business(db, user, business_id)
    stmt = (
        select(BusinessDocument)
        .where(BusinessDocument.business_id == business.id, BusinessDocument.deleted_at.is_(None))
        .order_by(BusinessDocument.doc_type.asc(), BusinessDocument.doc_year.desc())
    )
    return [BusinessDocumentDTO.model_validate(row) for row in (await db.execute(stmt)).scalars().all()]
