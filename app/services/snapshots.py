from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ServiceError, bad_request, not_found, wrap_unexpected
from app.models.business_document import BusinessDocument
from app.models.business_profile import BusinessProfile
from app.models.loan_application import LoanApplication
from app.models.loan_application_snapshot import LoanApplicationSnapshot
from app.models.loan_product_snapshot import LoanProductSnapshot
from app.models.offer_letter import OfferLetter
from app.models.personal_document import PersonalDocument
from app.schemas.snapshots import ApprovalStage
from app.services.audit_trail import model_snapshot

# Secrets never leave the encrypted column, not even into a snapshot
_BUSINESS_DOCUMENT_EXCLUDE = {"doc_password"}


async def _load_application(db: AsyncSession, loan_application_id: UUID) -> LoanApplication:
    stmt = select(LoanApplication).where(
        LoanApplication.id == loan_application_id,
        LoanApplication.deleted_at.is_(None),
    )
    application = (await db.execute(stmt)).scalar_one_or_none()
    if not application:
        raise not_found("[LOAN_APPLICATION_NOT_FOUND] Loan application not found")
    return application


async def build_snapshot_data(
    db: AsyncSession,
    application: LoanApplication,
    *,
    created_by: UUID,
    approval_stage: str,
    now: datetime,
) -> dict[str, Any]:
    """Collect the application aggregate into one JSON-safe document."""
    business = None
    business_documents: list[BusinessDocument] = []
    if application.business_id:
        business_stmt = select(BusinessProfile).where(BusinessProfile.id == application.business_id)
        business = (await db.execute(business_stmt)).scalar_one_or_none()
        docs_stmt = select(BusinessDocument).where(
            BusinessDocument.business_id == application.business_id,
            BusinessDocument.deleted_at.is_(None),
        )
        business_documents = list((await db.execute(docs_stmt)).scalars().all())

    personal_stmt = select(PersonalDocument).where(
        PersonalDocument.user_id == application.user_id,
        PersonalDocument.deleted_at.is_(None),
    )
    personal_documents = (await db.execute(personal_stmt)).scalars().all()

    offers_stmt = (
        select(OfferLetter)
        .where(
            OfferLetter.loan_application_id == application.id,
            OfferLetter.deleted_at.is_(None),
        )
        .order_by(OfferLetter.version.asc())
    )
    offer_letters = (await db.execute(offers_stmt)).scalars().all()

    product_stmt = (
        select(LoanProductSnapshot)
        .where(LoanProductSnapshot.loan_application_id == application.id)
        .order_by(LoanProductSnapshot.created_at.desc())
    )
    product_snapshot = (await db.execute(product_stmt)).scalars().first()

    return {
        "application": model_snapshot(application),
        "business_profile": model_snapshot(business) if business else None,
        "personal_documents": [model_snapshot(doc) for doc in personal_documents],
        "business_documents": [
            model_snapshot(doc, exclude=_BUSINESS_DOCUMENT_EXCLUDE) for doc in business_documents
        ],
        "offer_letters": [model_snapshot(offer) for offer in offer_letters],
        "loan_product": model_snapshot(product_snapshot) if product_snapshot else None,
        "metadata": {
            "created_at": now.isoformat(),
            "created_by": str(created_by),
            "approval_stage": approval_stage,
        },
    }


async def create_snapshot(
    db: AsyncSession,
    loan_application_id: UUID | None,
    created_by: UUID | None,
    approval_stage: str = ApprovalStage.LOAN_APPROVED.value,
    *,
    application: LoanApplication | None = None,
    now: datetime | None = None,
) -> LoanApplicationSnapshot:
    """Insert a new immutable snapshot row; never merges with earlier ones.

    Pass ``application`` when the caller already holds the (possibly
    just-mutated) row so the snapshot captures in-transaction state.
    """
    if not loan_application_id or not created_by or not approval_stage:
        raise bad_request(
            "[INVALID_PARAMETERS] loanApplicationId, createdBy and approvalStage are required"
        )
    now = now or datetime.now(timezone.utc)
    if application is None:
        application = await _load_application(db, loan_application_id)

    data = await build_snapshot_data(
        db,
        application,
        created_by=created_by,
        approval_stage=approval_stage,
        now=now,
    )
    snapshot = LoanApplicationSnapshot(
        loan_application_id=loan_application_id,
        created_by=created_by,
        approval_stage=approval_stage,
        snapshot_data=data,
        created_at=now,
    )
    db.add(snapshot)
    await db.flush()
    return snapshot


def snapshot_not_found() -> ServiceError:
    return not_found("[SNAPSHOT_NOT_FOUND] Snapshot not found")


@wrap_unexpected("SNAPSHOT_ERROR", "Failed to get snapshot")
async def get_snapshot(db: AsyncSession, snapshot_id: UUID) -> LoanApplicationSnapshot:
    stmt = select(LoanApplicationSnapshot).where(LoanApplicationSnapshot.id == snapshot_id)
    snapshot = (await db.execute(stmt)).scalar_one_or_none()
    if not snapshot:
        raise snapshot_not_found()
    return snapshot


@wrap_unexpected("SNAPSHOT_ERROR", "Failed to list snapshots")
async def get_snapshots(db: AsyncSession, loan_application_id: UUID) -> list[LoanApplicationSnapshot]:
    stmt = (
        select(LoanApplicationSnapshot)
        .where(LoanApplicationSnapshot.loan_application_id == loan_application_id)
        .order_by(LoanApplicationSnapshot.created_at.desc())
    )
    return list((await db.execute(stmt)).scalars().all())


@wrap_unexpected("SNAPSHOT_ERROR", "Failed to get latest snapshot")
async def get_latest_snapshot(
    db: AsyncSession, loan_application_id: UUID
) -> LoanApplicationSnapshot | None:
    stmt = (
        select(LoanApplicationSnapshot)
        .where(LoanApplicationSnapshot.loan_application_id == loan_application_id)
        .order_by(LoanApplicationSnapshot.created_at.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalars().first()
