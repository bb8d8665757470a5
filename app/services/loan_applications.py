from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import bad_request, conflict, not_found, wrap_unexpected
from app.models.loan_application import LoanApplication
from app.models.loan_product import LoanProduct
from app.models.loan_product_snapshot import LoanProductSnapshot
from app.models.user import User
from app.schemas.audit_trail import AuditAction, AuditLogParams
from app.schemas.common import build_pagination
from app.schemas.loan_applications import (
    EDITABLE_STATUSES,
    LoanApplicationCreate,
    LoanApplicationDTO,
    LoanApplicationListResponse,
    LoanApplicationStatus,
    LoanApplicationUpdate,
    OfferStage,
)
from app.schemas.status import StatusUpdateResult
from app.services import audit_trail, status as status_service
from app.services.audit_trail import diff_values, model_snapshot
from app.services.business import get_owned_business
from app.services.loan_products import get_product

logger = logging.getLogger(__name__)


def generate_application_number(now: datetime | None = None) -> str:
    year = (now or datetime.now(timezone.utc)).year
    return f"LOAN-{year}-{secrets.randbelow(1_000_000):06d}"


def _to_dto(application: LoanApplication) -> LoanApplicationDTO:
    return LoanApplicationDTO.model_validate(application)


def _validate_against_product(
    product: LoanProduct, *, amount: Decimal, term: int, currency: str | None = None
) -> None:
    if amount < product.min_amount or amount > product.max_amount:
        raise bad_request(
            f"[INVALID_AMOUNT] Loan amount must be between {product.min_amount} and {product.max_amount}",
            details={"min_amount": product.min_amount, "max_amount": product.max_amount},
        )
    if term < product.min_term or term > product.max_term:
        raise bad_request(
            f"[INVALID_TERM] Loan term must be between {product.min_term} and {product.max_term} {product.term_unit}",
            details={"min_term": product.min_term, "max_term": product.max_term},
        )
    if currency is not None and currency.upper() != product.currency:
        raise bad_request(
            f"[INVALID_CURRENCY] Loan product only supports {product.currency}",
            details={"currency": product.currency},
        )


async def _get_visible(db: AsyncSession, user: User, application_id: UUID) -> LoanApplication:
    """Owners see their applications, staff see all; anything else looks missing."""
    application = await status_service.get_application(db, application_id)
    if application.user_id != user.id and not user.is_staff:
        raise not_found("[LOAN_APPLICATION_NOT_FOUND] Loan application not found")
    return application


async def _get_owned_editable(db: AsyncSession, user: User, application_id: UUID, action: str) -> LoanApplication:
    application = await status_service.get_application(db, application_id)
    if application.user_id != user.id:
        raise not_found("[LOAN_APPLICATION_NOT_FOUND] Loan application not found")
    if application.status not in EDITABLE_STATUSES:
        raise bad_request(
            f"[INVALID_STATUS] Only draft or submitted applications can be {action}",
            details={"current_status": application.status},
        )
    return application


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        audit_trail.discard_pending(db)
        raise conflict(
            "[LOAN_APPLICATION_CONFLICT] Loan application was modified by another request; reload and retry"
        ) from exc
    await audit_trail.invalidate_pending(db)


@wrap_unexpected("CREATE_LOAN_APPLICATION_ERROR", "Failed to create loan application")
async def create(db: AsyncSession, user: User, body: LoanApplicationCreate) -> LoanApplicationDTO:
    product = await get_product(db, body.loan_product_id)
    if not product.is_active:
        raise bad_request("[PRODUCT_INACTIVE] Loan product is not accepting applications")
    if body.business_id:
        await get_owned_business(db, user, body.business_id)
    _validate_against_product(product, amount=body.loan_amount, term=body.loan_term, currency=body.currency)

    now = datetime.now(timezone.utc)
    initial_status = LoanApplicationStatus.DRAFT.value if body.as_draft else LoanApplicationStatus.SUBMITTED.value
    application = LoanApplication(
        application_number=generate_application_number(now),
        user_id=user.id,
        business_id=body.business_id,
        loan_product_id=product.id,
        co_applicant_ids=[str(co_applicant) for co_applicant in body.co_applicant_ids],
        loan_amount=body.loan_amount,
        loan_term=body.loan_term,
        currency=body.currency.upper(),
        purpose=body.purpose,
        purpose_description=body.purpose_description,
        is_business_loan=body.is_business_loan,
        status=initial_status,
        offer_stage=OfferStage.NONE.value,
        last_updated_by=user.id,
        last_updated_at=now,
        submitted_at=None if body.as_draft else now,
    )
    db.add(application)
    await db.flush()
    db.add(
        LoanProductSnapshot(
            loan_application_id=application.id,
            loan_product_id=product.id,
            product_snapshot=model_snapshot(product),
            product_version=product.version or 1,
        )
    )

    await audit_trail.log_action(
        db,
        AuditLogParams(
            loan_application_id=application.id,
            user_id=user.id,
            action=AuditAction.APPLICATION_CREATED,
            reason="Loan application created",
            details=f"Application {application.application_number} created as {initial_status}",
            metadata={"initial_status": initial_status, "loan_product_id": product.id},
            after_data=model_snapshot(application),
        ),
        now=now,
    )
    await _commit(db)
    await db.refresh(application)
    logger.info("Loan application %s created for user %s", application.id, user.id)
    return _to_dto(application)


@wrap_unexpected("LIST_LOAN_APPLICATIONS_ERROR", "Failed to list loan applications")
async def list_applications(
    db: AsyncSession,
    *,
    user_id: UUID | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> LoanApplicationListResponse:
    conditions: list[Any] = [LoanApplication.deleted_at.is_(None)]
    if user_id:
        conditions.append(LoanApplication.user_id == user_id)
    if status:
        conditions.append(LoanApplication.status == status)

    count_stmt = select(func.count()).select_from(LoanApplication).where(*conditions)
    total = int((await db.execute(count_stmt)).scalar_one() or 0)
    stmt = (
        select(LoanApplication)
        .where(*conditions)
        .order_by(LoanApplication.created_at.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    rows = (await db.execute(stmt)).scalars().all()
    return LoanApplicationListResponse(
        items=[_to_dto(row) for row in rows],
        pagination=build_pagination(page, limit, total),
    )


async def list_for_user(
    db: AsyncSession, user: User, *, status: str | None = None, page: int = 1, limit: int = 20
) -> LoanApplicationListResponse:
    return await list_applications(db, user_id=user.id, status=status, page=page, limit=limit)


@wrap_unexpected("GET_LOAN_APPLICATION_ERROR", "Failed to get loan application")
async def get(db: AsyncSession, user: User, application_id: UUID) -> LoanApplicationDTO:
    return _to_dto(await _get_visible(db, user, application_id))


async def ensure_visible(db: AsyncSession, user: User, application_id: UUID) -> LoanApplication:
    return await _get_visible(db, user, application_id)


@wrap_unexpected("UPDATE_LOAN_APPLICATION_ERROR", "Failed to update loan application")
async def update(
    db: AsyncSession, user: User, application_id: UUID, body: LoanApplicationUpdate
) -> LoanApplicationDTO:
    application = await _get_owned_editable(db, user, application_id, "updated")
    data = body.model_dump(exclude_unset=True)
    if not data:
        return _to_dto(application)

    if "loan_amount" in data or "loan_term" in data:
        product = await get_product(db, application.loan_product_id)
        _validate_against_product(
            product,
            amount=data.get("loan_amount", application.loan_amount),
            term=data.get("loan_term", application.loan_term),
        )
    if "co_applicant_ids" in data:
        data["co_applicant_ids"] = [str(co_applicant) for co_applicant in data["co_applicant_ids"] or []]

    now = datetime.now(timezone.utc)
    before = model_snapshot(application)
    for field, value in data.items():
        setattr(application, field, value)
    application.last_updated_by = user.id
    application.last_updated_at = now
    after = model_snapshot(application)

    await audit_trail.log_action(
        db,
        AuditLogParams(
            loan_application_id=application.id,
            user_id=user.id,
            action=AuditAction.APPLICATION_UPDATED,
            reason="Loan application updated",
            details=f"Updated fields: {', '.join(sorted(data))}",
            metadata={"changes": diff_values({k: before.get(k) for k in data}, {k: after.get(k) for k in data})},
            before_data={k: before.get(k) for k in data},
            after_data={k: after.get(k) for k in data},
        ),
        now=now,
    )
    await _commit(db)
    await db.refresh(application)
    return _to_dto(application)


@wrap_unexpected("WITHDRAW_LOAN_APPLICATION_ERROR", "Failed to withdraw loan application")
async def withdraw(
    db: AsyncSession, user: User, application_id: UUID, *, reason: str | None = None
) -> StatusUpdateResult:
    application = await status_service.get_application(db, application_id)
    if application.user_id != user.id:
        raise not_found("[LOAN_APPLICATION_NOT_FOUND] Loan application not found")
    return await status_service.update_status(
        db,
        application.id,
        LoanApplicationStatus.WITHDRAWN,
        user.id,
        reason=reason or "Withdrawn by applicant",
        metadata={"initiated_by": "applicant"},
    )


@wrap_unexpected("DELETE_LOAN_APPLICATION_ERROR", "Failed to delete loan application")
async def remove(db: AsyncSession, user: User, application_id: UUID) -> None:
    application = await _get_owned_editable(db, user, application_id, "deleted")
    now = datetime.now(timezone.utc)
    application.deleted_at = now
    await audit_trail.log_action(
        db,
        AuditLogParams(
            loan_application_id=application.id,
            user_id=user.id,
            action=AuditAction.APPLICATION_DELETED,
            reason="Loan application deleted",
            details=f"Application {application.application_number} deleted while {application.status}",
            before_data={"status": application.status},
        ),
        now=now,
    )
    await _commit(db)
