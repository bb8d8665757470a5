from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.models.user import User
from app.schemas.audit_trail import AuditTrailEntryDTO, AuditTrailSummary
from app.schemas.common import MessageResponse
from app.schemas.document_requests import DocumentRequestDTO, DocumentRequestStatus
from app.schemas.loan_applications import (
    LoanApplicationCreate,
    LoanApplicationDTO,
    LoanApplicationListResponse,
    LoanApplicationStatus,
    LoanApplicationUpdate,
    LoanApplicationWithdraw,
)
from app.schemas.snapshots import SnapshotDTO, SnapshotSummaryDTO
from app.schemas.status import StatusDTO, StatusHistoryEntry, StatusUpdateRequest, StatusUpdateResult
from app.services import audit_trail, document_requests, snapshots
from app.services import loan_applications as loan_application_service
from app.services import status as status_service

router = APIRouter(prefix="/loan-applications", tags=["loan-applications"])


@router.post("", response_model=LoanApplicationDTO, status_code=201, summary="Create a loan application")
async def create_loan_application(
    payload: LoanApplicationCreate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> LoanApplicationDTO:
    return await loan_application_service.create(db, current_user, payload)


@router.get("", response_model=LoanApplicationListResponse, summary="List loan applications")
async def list_loan_applications(
    status: LoanApplicationStatus | None = Query(default=None),
    mine: bool = Query(default=False, description="Staff only: restrict to own applications"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> LoanApplicationListResponse:
    status_value = status.value if status else None
    if current_user.is_staff and not mine:
        return await loan_application_service.list_applications(
            db, status=status_value, page=page, limit=limit
        )
    return await loan_application_service.list_for_user(
        db, current_user, status=status_value, page=page, limit=limit
    )


@router.get("/{application_id}", response_model=LoanApplicationDTO, summary="Get a loan application")
async def get_loan_application(
    application_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> LoanApplicationDTO:
    return await loan_application_service.get(db, current_user, application_id)


@router.patch("/{application_id}", response_model=LoanApplicationDTO, summary="Update a draft or submitted application")
async def update_loan_application(
    application_id: UUID,
    payload: LoanApplicationUpdate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> LoanApplicationDTO:
    return await loan_application_service.update(db, current_user, application_id, payload)


@router.delete("/{application_id}", response_model=MessageResponse, summary="Delete a draft or submitted application")
async def delete_loan_application(
    application_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await loan_application_service.remove(db, current_user, application_id)
    return MessageResponse(message="Loan application deleted")


@router.post("/{application_id}/withdraw", response_model=StatusUpdateResult, summary="Withdraw an application")
async def withdraw_loan_application(
    application_id: UUID,
    payload: LoanApplicationWithdraw | None = Body(default=None),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> StatusUpdateResult:
    reason = payload.reason if payload else None
    return await loan_application_service.withdraw(db, current_user, application_id, reason=reason)


@router.get("/{application_id}/status", response_model=StatusDTO, summary="Current status and allowed transitions")
async def get_application_status(
    application_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> StatusDTO:
    await loan_application_service.ensure_visible(db, current_user, application_id)
    return await status_service.get_status(db, application_id)


@router.patch("/{application_id}/status", response_model=StatusUpdateResult, summary="Transition application status")
async def update_application_status(
    application_id: UUID,
    payload: StatusUpdateRequest,
    current_user: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> StatusUpdateResult:
    return await status_service.update_status(
        db,
        application_id,
        payload.status,
        current_user.id,
        reason=payload.reason,
        rejection_reason=payload.rejection_reason,
        metadata=payload.metadata,
    )


@router.get(
    "/{application_id}/status-history",
    response_model=list[StatusHistoryEntry],
    summary="Chronological status changes",
)
async def get_application_status_history(
    application_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[StatusHistoryEntry]:
    await loan_application_service.ensure_visible(db, current_user, application_id)
    return await status_service.get_status_history(db, application_id)


@router.get("/{application_id}/audit-trail", response_model=list[AuditTrailEntryDTO], summary="Audit trail entries")
async def get_application_audit_trail(
    application_id: UUID,
    action: str | None = Query(default=None),
    limit: int = Query(audit_trail.DEFAULT_LIMIT, ge=1, le=500),
    offset: int = Query(0, ge=0),
    _: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> list[AuditTrailEntryDTO]:
    return await audit_trail.get_audit_trail(db, application_id, action=action, limit=limit, offset=offset)


@router.get(
    "/{application_id}/audit-trail/summary",
    response_model=AuditTrailSummary,
    summary="Audit trail counts per action",
)
async def get_application_audit_trail_summary(
    application_id: UUID,
    _: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> AuditTrailSummary:
    return await audit_trail.get_audit_trail_summary(db, application_id)


@router.get("/{application_id}/snapshots", response_model=list[SnapshotSummaryDTO], summary="List snapshots")
async def list_application_snapshots(
    application_id: UUID,
    _: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> list[SnapshotSummaryDTO]:
    rows = await snapshots.get_snapshots(db, application_id)
    return [SnapshotSummaryDTO.model_validate(row) for row in rows]


@router.get("/{application_id}/snapshots/latest", response_model=SnapshotDTO, summary="Latest snapshot")
async def get_latest_application_snapshot(
    application_id: UUID,
    _: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> SnapshotDTO:
    snapshot = await snapshots.get_latest_snapshot(db, application_id)
    if snapshot is None:
        raise snapshots.snapshot_not_found()
    return SnapshotDTO.model_validate(snapshot)


@router.get("/{application_id}/snapshots/{snapshot_id}", response_model=SnapshotDTO, summary="Get one snapshot")
async def get_application_snapshot(
    application_id: UUID,
    snapshot_id: UUID,
    _: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> SnapshotDTO:
    snapshot = await snapshots.get_snapshot(db, snapshot_id)
    if snapshot.loan_application_id != application_id:
        raise snapshots.snapshot_not_found()
    return SnapshotDTO.model_validate(snapshot)


@router.get(
    "/{application_id}/document-requests",
    response_model=list[DocumentRequestDTO],
    summary="Document requests for an application",
)
async def list_application_document_requests(
    application_id: UUID,
    status: DocumentRequestStatus | None = Query(default=None),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[DocumentRequestDTO]:
    await loan_application_service.ensure_visible(db, current_user, application_id)
    return await document_requests.list_document_requests(
        db, application_id, status=status.value if status else None
    )
