from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import bad_request, conflict, not_found, wrap_unexpected
from app.models.loan_application import LoanApplication
from app.models.loan_product import LoanProduct
from app.schemas.common import build_pagination
from app.schemas.loan_applications import LoanApplicationStatus
from app.schemas.loan_products import (
    LoanProductCreate,
    LoanProductDTO,
    LoanProductListResponse,
    LoanProductUpdate,
)

logger = logging.getLogger(__name__)

_ACTIVE_APPLICATION_STATUSES = (
    LoanApplicationStatus.DRAFT.value,
    LoanApplicationStatus.SUBMITTED.value,
    LoanApplicationStatus.UNDER_REVIEW.value,
    LoanApplicationStatus.APPROVED.value,
)


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug[:180].strip("-") or "loan-product"


def _validate_ranges(
    min_amount: Decimal, max_amount: Decimal, min_term: int, max_term: int
) -> None:
    if min_amount > max_amount:
        raise bad_request("[INVALID_AMOUNT_RANGE] min_amount cannot exceed max_amount")
    if min_term > max_term:
        raise bad_request("[INVALID_TERM_RANGE] min_term cannot exceed max_term")


async def _slug_taken(db: AsyncSession, slug: str, *, exclude_id: UUID | None = None) -> bool:
    stmt = select(LoanProduct.id).where(LoanProduct.slug == slug)
    if exclude_id:
        stmt = stmt.where(LoanProduct.id != exclude_id)
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def get_product(db: AsyncSession, product_id: UUID) -> LoanProduct:
    stmt = select(LoanProduct).where(LoanProduct.id == product_id, LoanProduct.deleted_at.is_(None))
    product = (await db.execute(stmt)).scalar_one_or_none()
    if not product:
        raise not_found("[LOAN_PRODUCT_NOT_FOUND] Loan product not found")
    return product


@wrap_unexpected("CREATE_LOAN_PRODUCT_ERROR", "Failed to create loan product")
async def create(db: AsyncSession, body: LoanProductCreate) -> LoanProductDTO:
    _validate_ranges(body.min_amount, body.max_amount, body.min_term, body.max_term)
    slug = body.slug or slugify(body.name)
    if await _slug_taken(db, slug):
        raise conflict("[SLUG_EXISTS] A loan product with this slug already exists", details={"slug": slug})

    data = body.model_dump(exclude={"slug"})
    data["currency"] = data["currency"].upper()
    product = LoanProduct(slug=slug, version=1, **data)
    db.add(product)
    await db.commit()
    await db.refresh(product)
    logger.info("Loan product %s created", slug)
    return LoanProductDTO.model_validate(product)


@wrap_unexpected("LIST_LOAN_PRODUCTS_ERROR", "Failed to list loan products")
async def list_products(
    db: AsyncSession,
    *,
    is_active: bool | None = None,
    page: int = 1,
    limit: int = 20,
) -> LoanProductListResponse:
    conditions = [LoanProduct.deleted_at.is_(None)]
    if is_active is not None:
        conditions.append(LoanProduct.is_active.is_(is_active))

    count_stmt = select(func.count()).select_from(LoanProduct).where(*conditions)
    total = int((await db.execute(count_stmt)).scalar_one() or 0)
    stmt = (
        select(LoanProduct)
        .where(*conditions)
        .order_by(LoanProduct.name.asc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    products = (await db.execute(stmt)).scalars().all()
    return LoanProductListResponse(
        items=[LoanProductDTO.model_validate(product) for product in products],
        pagination=build_pagination(page, limit, total),
    )


@wrap_unexpected("GET_LOAN_PRODUCT_ERROR", "Failed to get loan product")
async def get(db: AsyncSession, product_id: UUID) -> LoanProductDTO:
    return LoanProductDTO.model_validate(await get_product(db, product_id))


@wrap_unexpected("UPDATE_LOAN_PRODUCT_ERROR", "Failed to update loan product")
async def update(db: AsyncSession, product_id: UUID, body: LoanProductUpdate) -> LoanProductDTO:
    product = await get_product(db, product_id)
    data = body.model_dump(exclude_unset=True)
    if not data:
        return LoanProductDTO.model_validate(product)

    _validate_ranges(
        data.get("min_amount", product.min_amount),
        data.get("max_amount", product.max_amount),
        data.get("min_term", product.min_term),
        data.get("max_term", product.max_term),
    )
    if data.get("currency"):
        data["currency"] = data["currency"].upper()
    for field, value in data.items():
        setattr(product, field, value)
    product.version = (product.version or 1) + 1
    await db.commit()
    await db.refresh(product)
    return LoanProductDTO.model_validate(product)


@wrap_unexpected("DELETE_LOAN_PRODUCT_ERROR", "Failed to delete loan product")
async def remove(db: AsyncSession, product_id: UUID) -> None:
    product = await get_product(db, product_id)
    count_stmt = (
        select(func.count())
        .select_from(LoanApplication)
        .where(
            LoanApplication.loan_product_id == product.id,
            LoanApplication.deleted_at.is_(None),
            LoanApplication.status.in_(_ACTIVE_APPLICATION_STATUSES),
        )
    )
    active = int((await db.execute(count_stmt)).scalar_one() or 0)
    if active:
        raise bad_request(
            f"[PRODUCT_HAS_APPLICATIONS] Cannot delete product with {active} active applications",
            details={"active_applications": active},
        )
    product.deleted_at = datetime.now(timezone.utc)
    product.is_active = False
    await db.commit()
