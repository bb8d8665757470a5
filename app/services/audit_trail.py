"""Append-only audit trail for loan applications.

Every state-changing operation on an application, its documents, document
requests and offer letters lands in one table so each application has a single
chronological history.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from pydantic import TypeAdapter
from sqlalchemy import func, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import bad_request, wrap_unexpected
from app.core.logging import get_audit_logger
from app.core.settings import settings
from app.models.application_audit_trail import ApplicationAuditTrail
from app.schemas.audit_trail import AuditLogParams, AuditTrailEntryDTO, AuditTrailSummary
from app.utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
_ENTRIES_ADAPTER = TypeAdapter(list[AuditTrailEntryDTO])


def serialize_for_audit(value: Any) -> Any:
    return jsonable_encoder(
        value,
        custom_encoder={
            Decimal: lambda v: str(v),
            datetime: lambda v: v.isoformat(),
            date: lambda v: v.isoformat(),
            UUID: lambda v: str(v),
        },
    )


def model_snapshot(model: Any, *, exclude: Iterable[str] | None = None) -> dict[str, Any]:
    if model is None:
        return {}
    excluded = set(exclude or [])
    data: dict[str, Any] = {}
    for attr in inspect(type(model)).column_attrs:
        if attr.key in excluded:
            continue
        data[attr.key] = getattr(model, attr.key)
    return serialize_for_audit(data)


def diff_values(old: Any, new: Any, prefix: str = "") -> dict[str, dict[str, Any]]:
    changes: dict[str, dict[str, Any]] = {}
    if isinstance(old, dict) and isinstance(new, dict):
        for key in set(old.keys()) | set(new.keys()):
            path = f"{prefix}.{key}" if prefix else str(key)
            changes.update(diff_values(old.get(key), new.get(key), path))
        return changes
    if old != new:
        changes[prefix or "value"] = {"from": old, "to": new}
    return changes


def _cache_prefix(loan_application_id: UUID | str) -> str:
    return f"audit_trail:{loan_application_id}:"


def _cache_key(loan_application_id: UUID | str, action: str | None, limit: int, offset: int) -> str:
    return f"{_cache_prefix(loan_application_id)}{action or '*'}:{limit}:{offset}"


def _cache_enabled() -> bool:
    return settings.audit_trail_cache_ttl_seconds > 0


async def _get_cached_entries(key: str) -> list[AuditTrailEntryDTO] | None:
    if not _cache_enabled():
        return None
    try:
        redis = get_redis_client()
        cached = await redis.get(key)
        if cached:
            return _ENTRIES_ADAPTER.validate_json(cached)
    except Exception:
        return None
    return None


async def _set_cached_entries(key: str, entries: list[AuditTrailEntryDTO]) -> None:
    if not _cache_enabled():
        return None
    try:
        redis = get_redis_client()
        await redis.setex(key, settings.audit_trail_cache_ttl_seconds, _ENTRIES_ADAPTER.dump_json(entries))
    except Exception:
        return None


async def invalidate_cache(loan_application_id: UUID | str) -> None:
    if not _cache_enabled():
        return None
    try:
        redis = get_redis_client()
        keys = [key async for key in redis.scan_iter(match=f"{_cache_prefix(loan_application_id)}*")]
        if keys:
            await redis.delete(*keys)
    except Exception:
        logger.warning("Audit trail cache invalidation failed for %s", loan_application_id)


_PENDING_KEY = "audit_trail_pending_invalidation"


def _mark_pending(db: AsyncSession, loan_application_id: UUID) -> None:
    db.info.setdefault(_PENDING_KEY, set()).add(loan_application_id)


async def invalidate_pending(db: AsyncSession) -> None:
    """Drop cached trails for applications written in the transaction just committed."""
    for loan_application_id in db.info.pop(_PENDING_KEY, set()):
        await invalidate_cache(loan_application_id)


def discard_pending(db: AsyncSession) -> None:
    db.info.pop(_PENDING_KEY, None)


def _missing_fields(params: AuditLogParams) -> list[str]:
    required = ("loan_application_id", "user_id", "action")
    return [name for name in required if getattr(params, name) is None]


async def log_action(
    db: AsyncSession,
    params: AuditLogParams,
    *,
    now: datetime | None = None,
) -> ApplicationAuditTrail:
    """Append one entry.

    The caller owns the transaction: it commits, then calls
    ``invalidate_pending`` so readers never cache pre-commit rows.
    """
    missing = _missing_fields(params)
    if missing:
        raise bad_request(
            "[INVALID_PARAMETERS] loanApplicationId, userId and action are required",
            details={"missing_fields": missing},
        )

    action = params.action.value
    entry = ApplicationAuditTrail(
        loan_application_id=params.loan_application_id,
        user_id=params.user_id,
        action=action,
        reason=params.reason,
        details=params.details,
        metadata_=serialize_for_audit(params.metadata) if params.metadata is not None else None,
        before_data=serialize_for_audit(params.before_data) if params.before_data is not None else None,
        after_data=serialize_for_audit(params.after_data) if params.after_data is not None else None,
        created_at=now or datetime.now(timezone.utc),
    )
    db.add(entry)
    await db.flush()

    get_audit_logger().info(
        "%s on loan application %s",
        action,
        params.loan_application_id,
        extra={
            "audit": {
                "entry_id": str(entry.id),
                "loan_application_id": str(params.loan_application_id),
                "user_id": str(params.user_id),
                "action": action,
            }
        },
    )
    _mark_pending(db, params.loan_application_id)
    return entry


async def log_actions(
    db: AsyncSession,
    params_list: list[AuditLogParams],
    *,
    now: datetime | None = None,
) -> list[ApplicationAuditTrail]:
    if not params_list:
        raise bad_request("[INVALID_PARAMETERS] At least one audit entry is required")
    return [await log_action(db, params, now=now) for params in params_list]


@wrap_unexpected("AUDIT_TRAIL_ERROR", "Failed to get audit trail")
async def get_audit_trail(
    db: AsyncSession,
    loan_application_id: UUID | None,
    *,
    action: str | None = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> list[AuditTrailEntryDTO]:
    if not loan_application_id:
        raise bad_request("[INVALID_PARAMETERS] loanApplicationId is required")

    key = _cache_key(loan_application_id, action, limit, offset)
    cached = await _get_cached_entries(key)
    if cached is not None:
        return cached

    stmt = select(ApplicationAuditTrail).where(
        ApplicationAuditTrail.loan_application_id == loan_application_id
    )
    if action:
        stmt = stmt.where(ApplicationAuditTrail.action == action)
    stmt = stmt.order_by(ApplicationAuditTrail.created_at.desc()).limit(limit).offset(offset)
    result = await db.execute(stmt)
    entries = [AuditTrailEntryDTO.model_validate(row) for row in result.scalars().all()]

    await _set_cached_entries(key, entries)
    return entries


@wrap_unexpected("AUDIT_SUMMARY_ERROR", "Failed to get audit trail summary")
async def get_audit_trail_summary(db: AsyncSession, loan_application_id: UUID) -> AuditTrailSummary:
    stmt = (
        select(
            ApplicationAuditTrail.action,
            func.count(ApplicationAuditTrail.id),
            func.max(ApplicationAuditTrail.created_at),
        )
        .where(ApplicationAuditTrail.loan_application_id == loan_application_id)
        .group_by(ApplicationAuditTrail.action)
    )
    rows = (await db.execute(stmt)).all()

    action_counts: dict[str, int] = {}
    last_action: str | None = None
    last_action_at: datetime | None = None
    for action, count, latest in rows:
        action_counts[action] = int(count)
        if latest is not None and (last_action_at is None or latest > last_action_at):
            last_action, last_action_at = action, latest

    return AuditTrailSummary(
        loan_application_id=loan_application_id,
        total_entries=sum(action_counts.values()),
        last_action=last_action,
        last_action_at=last_action_at,
        action_counts=action_counts,
    )
