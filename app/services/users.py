from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import bad_request, conflict, not_found, wrap_unexpected
from app.models.user import User
from app.schemas.users import (
    EmailUpdateExtraction,
    SignUpData,
    UserDataExtraction,
    UserDTO,
    UserProfileUpdate,
)
from app.services import email as email_service

logger = logging.getLogger(__name__)

USER_CREATED = "user.created"
USER_UPDATED = "user.updated"


def _primary_email(data: dict[str, Any]) -> str | None:
    addresses = data.get("email_addresses")
    if not isinstance(addresses, list) or not addresses:
        return None
    primary_id = data.get("primary_email_address_id")
    for address in addresses:
        if isinstance(address, dict) and address.get("id") == primary_id and address.get("email_address"):
            return address["email_address"]
    first = addresses[0]
    return first.get("email_address") if isinstance(first, dict) else None


def _parse_dob(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            try:
                return date.fromisoformat(value[:10])
            except ValueError:
                return None
    return None


def extract_user_data_from_webhook(event: dict[str, Any]) -> UserDataExtraction:
    """Pull sign-up fields out of a ``user.created`` event.

    Contact details come from ``unsafe_metadata`` (gender, phoneNumber, dob).
    """
    data = event.get("data")
    if not isinstance(data, dict):
        return UserDataExtraction(
            success=False,
            error="Failed to extract user data from webhook",
            code="USER_DATA_EXTRACTION_FAILED",
        )

    metadata = data.get("unsafe_metadata") or {}
    if not isinstance(metadata, dict):
        metadata = {}
    values = {
        "email": _primary_email(data),
        "first_name": data.get("first_name"),
        "last_name": data.get("last_name"),
        "gender": metadata.get("gender"),
        "phone_number": metadata.get("phoneNumber"),
        "dob": _parse_dob(metadata.get("dob")),
    }
    missing = [name for name, value in values.items() if not value]
    if missing:
        return UserDataExtraction(
            success=False,
            missing_fields=missing,
            error=f"Missing required fields: {', '.join(missing)}",
            code="INVALID_METADATA",
        )

    external_id = data.get("id")
    if not external_id:
        return UserDataExtraction(
            success=False,
            missing_fields=["id"],
            error="Missing required fields: id",
            code="INVALID_METADATA",
        )
    return UserDataExtraction(
        success=True,
        user_data=SignUpData(external_id=external_id, image_url=data.get("image_url"), **values),
    )


def extract_email_update_from_webhook(event: dict[str, Any]) -> EmailUpdateExtraction:
    data = event.get("data")
    external_id = data.get("id") if isinstance(data, dict) else None
    email = _primary_email(data) if isinstance(data, dict) else None
    if not external_id or not email:
        return EmailUpdateExtraction(
            success=False,
            error="Missing user id or primary email in webhook payload",
            code="EMAIL_UPDATE_EXTRACTION_FAILED",
        )
    return EmailUpdateExtraction(success=True, external_id=external_id, email=email)


async def get_by_external_id(db: AsyncSession, external_id: str) -> User | None:
    stmt = select(User).where(User.external_id == external_id, User.deleted_at.is_(None))
    return (await db.execute(stmt)).scalar_one_or_none()


@wrap_unexpected("SIGNUP_ERROR", "Failed to create user")
async def sign_up(db: AsyncSession, data: SignUpData) -> tuple[User, bool]:
    """Create the local user for an identity-provider account.

    Returns ``(user, created)``; a replayed event returns the existing row.
    """
    existing = await get_by_external_id(db, data.external_id)
    if existing:
        return existing, False

    user = User(
        external_id=data.external_id,
        email=str(data.email).lower(),
        first_name=data.first_name,
        last_name=data.last_name,
        gender=data.gender,
        phone_number=data.phone_number,
        dob=data.dob,
        image_url=data.image_url,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise conflict("[EMAIL_EXISTS] A user with this email already exists") from exc
    await db.refresh(user)
    logger.info("User %s signed up", user.id)
    return user, True


@wrap_unexpected("UPDATE_USER_EMAIL_ERROR", "Failed to update user email")
async def update_email(db: AsyncSession, external_id: str, email: str) -> User:
    user = await get_by_external_id(db, external_id)
    if not user:
        raise not_found("[USER_NOT_FOUND] User not found")
    email = email.lower()
    if user.email == email:
        return user
    user.email = email
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise conflict("[EMAIL_EXISTS] A user with this email already exists") from exc
    await db.refresh(user)
    return user


async def handle_identity_event(db: AsyncSession, event: dict[str, Any]) -> dict[str, Any]:
    event_type = event.get("type")
    if event_type == USER_CREATED:
        extraction = extract_user_data_from_webhook(event)
        if not extraction.success:
            raise bad_request(
                f"[{extraction.code}] {extraction.error}",
                details={"missing_fields": extraction.missing_fields},
            )
        user, created = await sign_up(db, extraction.user_data)
        if created:
            try:
                result = await email_service.send_welcome_email(to=user.email, first_name=user.first_name)
                if not result.success:
                    logger.warning("Welcome email for user %s not delivered: %s", user.id, result.error)
            except Exception:
                logger.exception("Welcome email for user %s failed", user.id)
        return {"email": user.email, "created": created}

    if event_type == USER_UPDATED:
        extraction = extract_email_update_from_webhook(event)
        if not extraction.success:
            raise bad_request(f"[{extraction.code}] {extraction.error}")
        user = await update_email(db, extraction.external_id, extraction.email)
        return {"email": user.email, "updated": True}

    logger.info("Ignoring identity event type %s", event_type)
    return {"ignored": True, "type": event_type}


def get_profile(user: User) -> UserDTO:
    return UserDTO.model_validate(user)


@wrap_unexpected("UPDATE_PROFILE_ERROR", "Failed to update profile")
async def update_profile(db: AsyncSession, user: User, body: UserProfileUpdate) -> UserDTO:
    data = body.model_dump(exclude_unset=True)
    for field, value in data.items():
        setattr(user, field, value)
    if data:
        await db.commit()
        await db.refresh(user)
    return UserDTO.model_validate(user)
