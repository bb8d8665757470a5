import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import bad_request
from app.core.limiter import limiter
from app.core.settings import settings
from app.core.webhook_signature import verify_hmac_signature, verify_svix_signature
from app.db.session import get_db
from app.schemas.offer_letters import DocuSignWebhookResult
from app.services import offer_letters as offer_letter_service
from app.services import users as user_service

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


def _parse_json(body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(body or b"{}")
    except ValueError as exc:
        raise bad_request("[INVALID_JSON] Webhook body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise bad_request("[INVALID_JSON] Webhook body must be a JSON object")
    return payload


@router.post("/clerk", summary="Identity provider user events")
@limiter.exempt
async def clerk_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> dict:
    body = await request.body()
    if settings.clerk_webhook_secret:
        try:
            verify_svix_signature(
                settings.clerk_webhook_secret,
                payload=body,
                msg_id=request.headers.get("svix-id"),
                timestamp=request.headers.get("svix-timestamp"),
                signature_header=request.headers.get("svix-signature"),
                tolerance_seconds=settings.webhook_tolerance_seconds,
            )
        except ValueError as exc:
            logger.warning("Rejected identity webhook: %s", exc)
            raise bad_request(f"[WEBHOOK_VERIFICATION_FAILED] {exc}") from exc

    event = _parse_json(body)
    if not event.get("type"):
        raise bad_request("[INVALID_EVENT_TYPE] Webhook event type is missing")
    return await user_service.handle_identity_event(db, event)


@router.post("/docusign", response_model=DocuSignWebhookResult, summary="DocuSign Connect envelope events")
@limiter.exempt
async def docusign_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> DocuSignWebhookResult:
    body = await request.body()
    if settings.docusign_webhook_secret:
        try:
            verify_hmac_signature(
                settings.docusign_webhook_secret,
                payload=body,
                signature=request.headers.get("X-DocuSign-Signature-1"),
            )
        except ValueError as exc:
            logger.warning("Rejected DocuSign webhook: %s", exc)
            raise bad_request(f"[WEBHOOK_VERIFICATION_FAILED] {exc}") from exc

    return await offer_letter_service.handle_docusign_webhook(db, _parse_json(body))
