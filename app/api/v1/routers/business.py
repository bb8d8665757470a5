from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.models.user import User
from app.schemas.business import BusinessCreate, BusinessDTO, BusinessUpdate
from app.schemas.common import MessageResponse
from app.schemas.documents import BusinessDocumentDTO, BusinessDocumentsUpsert
from app.services import business as business_service
from app.services import documents as document_service

router = APIRouter(prefix="/business", tags=["business"])


@router.post("", response_model=BusinessDTO, status_code=201, summary="Register a business")
async def create_business(
    payload: BusinessCreate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> BusinessDTO:
    return await business_service.create(db, current_user, payload)


@router.get("", response_model=list[BusinessDTO], summary="List my businesses")
async def list_businesses(
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[BusinessDTO]:
    return await business_service.list_for_user(db, current_user)


@router.get("/{business_id}", response_model=BusinessDTO, summary="Get a business")
async def get_business(
    business_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> BusinessDTO:
    return await business_service.get(db, current_user, business_id)


@router.patch("/{business_id}", response_model=BusinessDTO, summary="Update a business")
async def update_business(
    business_id: UUID,
    payload: BusinessUpdate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> BusinessDTO:
    return await business_service.update(db, current_user, business_id, payload)


@router.delete("/{business_id}", response_model=MessageResponse, summary="Delete a business")
async def delete_business(
    business_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await business_service.remove(db, current_user, business_id)
    return MessageResponse(message="Business deleted")


@router.get("/{business_id}/documents", response_model=list[BusinessDocumentDTO], summary="List business documents")
async def list_business_documents(
    business_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[BusinessDocumentDTO]:
    return await document_service.list_business_documents(db, current_user, business_id)


@router.put("/{business_id}/documents", response_model=list[BusinessDocumentDTO], summary="Upsert business documents")
async def upsert_business_documents(
    business_id: UUID,
    payload: BusinessDocumentsUpsert,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[BusinessDocumentDTO]:
    return await document_service.upsert_business_documents(db, current_user, business_id, payload.documents)
