from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import not_found, wrap_unexpected
from app.models.business_profile import BusinessProfile
from app.models.user import User
from app.schemas.business import BusinessCreate, BusinessDTO, BusinessUpdate


async def get_owned_business(db: AsyncSession, user: User, business_id: UUID) -> BusinessProfile:
    stmt = select(BusinessProfile).where(
        BusinessProfile.id == business_id,
        BusinessProfile.user_id == user.id,
        BusinessProfile.deleted_at.is_(None),
    )
    business = (await db.execute(stmt)).scalar_one_or_none()
    if not business:
        raise not_found("[BUSINESS_NOT_FOUND] Business not found")
    return business


@wrap_unexpected("BUSINESS_REGISTER_ERROR", "Failed to register business")
async def create(db: AsyncSession, user: User, body: BusinessCreate) -> BusinessDTO:
    data = body.model_dump()
    if data.get("currency"):
        data["currency"] = data["currency"].upper()
    business = BusinessProfile(user_id=user.id, **data)
    db.add(business)
    await db.commit()
    await db.refresh(business)
    return BusinessDTO.model_validate(business)


@wrap_unexpected("LIST_BUSINESSES_ERROR", "Failed to list businesses")
async def list_for_user(db: AsyncSession, user: User) -> list[BusinessDTO]:
    stmt = (
        select(BusinessProfile)
        .where(BusinessProfile.user_id == user.id, BusinessProfile.deleted_at.is_(None))
        .order_by(BusinessProfile.created_at.desc())
    )
    return [BusinessDTO.model_validate(row) for row in (await db.execute(stmt)).scalars().all()]


@wrap_unexpected("GET_BUSINESS_ERROR", "Failed to get business")
async def get(db: AsyncSession, user: User, business_id: UUID) -> BusinessDTO:
    return BusinessDTO.model_validate(await get_owned_business(db, user, business_id))


@wrap_unexpected("UPDATE_BUSINESS_ERROR", "Failed to update business")
async def update(db: AsyncSession, user: User, business_id: UUID, body: BusinessUpdate) -> BusinessDTO:
    business = await get_owned_business(db, user, business_id)
    data = body.model_dump(exclude_unset=True)
    if data.get("currency"):
        data["currency"] = data["currency"].upper()
    for field, value in data.items():
        setattr(business, field, value)
    if data:
        await db.commit()
        await db.refresh(business)
    return BusinessDTO.model_validate(business)


@wrap_unexpected("DELETE_BUSINESS_ERROR", "Failed to delete business")
async def remove(db: AsyncSession, user: User, business_id: UUID) -> None:
    business = await get_owned_business(db, user, business_id)
    business.deleted_at = datetime.now(timezone.utc)
    await db.commit()
