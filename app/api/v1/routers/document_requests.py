from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.models.user import User
from app.schemas.document_requests import (
    DocumentRequestCreate,
    DocumentRequestDTO,
    DocumentRequestFulfill,
    DocumentRequestStatus,
)
from app.services import document_requests as document_request_service

router = APIRouter(prefix="/document-requests", tags=["document-requests"])


@router.post("", response_model=DocumentRequestDTO, status_code=201, summary="Request a document from a user")
async def create_document_request(
    payload: DocumentRequestCreate,
    current_user: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> DocumentRequestDTO:
    return await document_request_service.create_document_request(db, current_user, payload)


@router.get("", response_model=list[DocumentRequestDTO], summary="List document requests for an application")
async def list_document_requests(
    loan_application_id: UUID = Query(...),
    status: DocumentRequestStatus | None = Query(default=None),
    _: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> list[DocumentRequestDTO]:
    return await document_request_service.list_document_requests(
        db, loan_application_id, status=status.value if status else None
    )


@router.post("/{request_id}/fulfill", response_model=DocumentRequestDTO, summary="Fulfil a document request")
async def fulfill_document_request(
    request_id: UUID,
    payload: DocumentRequestFulfill,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> DocumentRequestDTO:
    return await document_request_service.fulfill_document_request(db, current_user, request_id, payload)
