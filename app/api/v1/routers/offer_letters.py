from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.models.user import User
from app.schemas.common import MessageResponse
from app.schemas.offer_letters import (
    OfferLetterCreate,
    OfferLetterDTO,
    OfferLetterListQuery,
    OfferLetterListResponse,
    OfferLetterSend,
    OfferLetterUpdate,
    OfferLetterVoid,
)
from app.services import offer_letters as offer_letter_service

router = APIRouter(prefix="/offer-letters", tags=["offer-letters"])


@router.post("", response_model=OfferLetterDTO, status_code=201, summary="Draft an offer letter")
async def create_offer_letter(
    payload: OfferLetterCreate,
    current_user: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> OfferLetterDTO:
    return await offer_letter_service.create(db, payload, current_user)


@router.get("", response_model=OfferLetterListResponse, summary="List offer letters")
async def list_offer_letters(
    query: OfferLetterListQuery = Depends(),
    _: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> OfferLetterListResponse:
    return await offer_letter_service.list_offer_letters(db, query)


@router.get("/expiring", response_model=list[OfferLetterDTO], summary="Sent offers expiring soon")
async def list_expiring_offer_letters(
    hours: int = Query(24, ge=1, le=24 * 30),
    _: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> list[OfferLetterDTO]:
    return await offer_letter_service.get_expiring(db, hours)


@router.get("/{offer_id}", response_model=OfferLetterDTO, summary="Get an offer letter")
async def get_offer_letter(
    offer_id: UUID,
    _: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> OfferLetterDTO:
    return await offer_letter_service.get(db, offer_id)


@router.patch("/{offer_id}", response_model=OfferLetterDTO, summary="Edit a draft offer letter")
async def update_offer_letter(
    offer_id: UUID,
    payload: OfferLetterUpdate,
    current_user: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> OfferLetterDTO:
    return await offer_letter_service.update(db, offer_id, payload, current_user)


@router.delete("/{offer_id}", response_model=MessageResponse, summary="Delete a draft offer letter")
async def delete_offer_letter(
    offer_id: UUID,
    current_user: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await offer_letter_service.remove(db, offer_id, current_user)
    return MessageResponse(message="Offer letter deleted")


@router.post("/{offer_id}/send", response_model=OfferLetterDTO, summary="Send for e-signature")
async def send_offer_letter(
    offer_id: UUID,
    payload: OfferLetterSend | None = Body(default=None),
    current_user: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> OfferLetterDTO:
    return await offer_letter_service.send(db, offer_id, payload or OfferLetterSend(), current_user)


@router.post("/{offer_id}/void", response_model=OfferLetterDTO, summary="Void an offer letter")
async def void_offer_letter(
    offer_id: UUID,
    payload: OfferLetterVoid,
    current_user: User = Depends(deps.require_staff),
    db: AsyncSession = Depends(get_db),
) -> OfferLetterDTO:
    return await offer_letter_service.void(db, offer_id, payload, current_user)
