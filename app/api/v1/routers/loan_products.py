from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.models.user import User
from app.schemas.common import MessageResponse
from app.schemas.loan_products import (
    LoanProductCreate,
    LoanProductDTO,
    LoanProductListResponse,
    LoanProductUpdate,
)
from app.services import loan_products as loan_product_service

router = APIRouter(prefix="/loan-products", tags=["loan-products"])


@router.get("", response_model=LoanProductListResponse, summary="List loan products")
async def list_loan_products(
    is_active: bool | None = Query(default=None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> LoanProductListResponse:
    return await loan_product_service.list_products(db, is_active=is_active, page=page, limit=limit)


@router.get("/{product_id}", response_model=LoanProductDTO, summary="Get a loan product")
async def get_loan_product(
    product_id: UUID,
    _: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> LoanProductDTO:
    return await loan_product_service.get(db, product_id)


@router.post("", response_model=LoanProductDTO, status_code=201, summary="Create a loan product")
async def create_loan_product(
    payload: LoanProductCreate,
    _: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> LoanProductDTO:
    return await loan_product_service.create(db, payload)


@router.patch("/{product_id}", response_model=LoanProductDTO, summary="Update a loan product")
async def update_loan_product(
    product_id: UUID,
    payload: LoanProductUpdate,
    _: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> LoanProductDTO:
    return await loan_product_service.update(db, product_id, payload)


@router.delete("/{product_id}", response_model=MessageResponse, summary="Delete a loan product")
async def delete_loan_product(
    product_id: UUID,
    _: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await loan_product_service.remove(db, product_id)
    return MessageResponse(message="Loan product deleted")
