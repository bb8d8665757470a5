"""Transactional email over a Resend-compatible HTTP API.

Senders never raise on transport failures; they return an ``EmailResult``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from app.core.settings import settings
from app.utils.templating import render_template

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


async def send_email(
    to: str | list[str],
    subject: str,
    html: str,
    *,
    text: str | None = None,
    reply_to: str | None = None,
) -> EmailResult:
    if not settings.resend_api_key:
        logger.warning("Email transport not configured; dropping email subject=%s", subject)
        return EmailResult(success=False, error="Email transport not configured")

    payload: dict[str, object] = {
        "from": settings.from_email,
        "to": [to] if isinstance(to, str) else list(to),
        "subject": subject,
        "html": html,
    }
    if text:
        payload["text"] = text
    if reply_to:
        payload["reply_to"] = reply_to

    try:
        async with httpx.AsyncClient(timeout=settings.email_timeout_seconds) as client:
            response = await client.post(
                settings.resend_api_url,
                json=payload,
                headers={"Authorization": f"Bearer {settings.resend_api_key}"},
            )
            response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        logger.warning(
            "Email provider rejected message status=%s subject=%s",
            exc.response.status_code,
            subject,
        )
        return EmailResult(success=False, error=f"Email provider returned {exc.response.status_code}")
    except httpx.HTTPError as exc:
        logger.warning("Email transport error subject=%s error=%s", subject, exc)
        return EmailResult(success=False, error=str(exc) or exc.__class__.__name__)

    try:
        message_id = response.json().get("id")
    except ValueError:
        message_id = None
    logger.info("Email sent message_id=%s subject=%s", message_id, subject)
    return EmailResult(success=True, message_id=message_id)


async def send_welcome_email(*, to: str, first_name: str | None = None) -> EmailResult:
    html = render_template("email/welcome.html", {"first_name": first_name or "there"})
    return await send_email(to, "Welcome aboard", html)


async def send_verification_code_email(
    *, to: str, code: str, first_name: str | None = None, expires_in_minutes: int = 10
) -> EmailResult:
    html = render_template(
        "email/verification_code.html",
        {
            "first_name": first_name or "there",
            "code": code,
            "expires_in_minutes": expires_in_minutes,
        },
    )
    return await send_email(to, "Your verification code", html)
