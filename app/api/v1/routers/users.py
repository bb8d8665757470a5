from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.models.user import User
from app.schemas.document_requests import DocumentRequestDTO, DocumentRequestStatus
from app.schemas.documents import PersonalDocumentDTO, PersonalDocumentsUpsert
from app.schemas.users import UserDTO, UserProfileUpdate
from app.services import document_requests as document_request_service
from app.services import documents as document_service
from app.services import users as user_service

router = APIRouter(prefix="/user", tags=["user"])


@router.get("/me", response_model=UserDTO, summary="Current user profile")
async def read_me(current_user: User = Depends(deps.get_current_user)) -> UserDTO:
    return user_service.get_profile(current_user)


@router.patch("/me", response_model=UserDTO, summary="Update current user profile")
async def update_me(
    payload: UserProfileUpdate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserDTO:
    return await user_service.update_profile(db, current_user, payload)


@router.get("/documents", response_model=list[PersonalDocumentDTO], summary="List my personal documents")
async def list_my_documents(
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[PersonalDocumentDTO]:
    return await document_service.list_personal_documents(db, current_user)


@router.put("/documents", response_model=list[PersonalDocumentDTO], summary="Upsert my personal documents")
async def upsert_my_documents(
    payload: PersonalDocumentsUpsert,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[PersonalDocumentDTO]:
    return await document_service.upsert_personal_documents(
        db,
        current_user,
        payload.documents,
        loan_application_id=payload.loan_application_id,
    )


@router.get("/document-requests", response_model=list[DocumentRequestDTO], summary="Document requests addressed to me")
async def list_my_document_requests(
    status: DocumentRequestStatus | None = Query(default=None),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[DocumentRequestDTO]:
    return await document_request_service.list_for_user(
        db, current_user, status=status.value if status else None
    )
