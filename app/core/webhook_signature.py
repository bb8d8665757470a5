"""Signature checks for inbound provider webhooks."""

from __future__ import annotations

import base64
import hashlib
import hmac
import time


class WebhookSignatureError(ValueError):
    pass


def _svix_secret_bytes(secret: str) -> bytes:
    if secret.startswith("whsec_"):
        secret = secret[len("whsec_"):]
    return base64.b64decode(secret)


def verify_svix_signature(
    secret: str,
    *,
    payload: bytes,
    msg_id: str | None,
    timestamp: str | None,
    signature_header: str | None,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> None:
    """Validate Svix-style headers (``svix-id``, ``svix-timestamp``, ``svix-signature``).

    The signed content is ``{id}.{timestamp}.{body}``; the header holds one or more
    space separated ``v1,<base64 hmac>`` entries.
    """
    if not msg_id or not timestamp or not signature_header:
        raise WebhookSignatureError("Missing signature headers")
    try:
        sent_at = int(timestamp)
    except ValueError as exc:
        raise WebhookSignatureError("Invalid signature timestamp") from exc

    current = now if now is not None else time.time()
    if abs(current - sent_at) > tolerance_seconds:
        raise WebhookSignatureError("Signature timestamp outside tolerance")

    signed_content = f"{msg_id}.{timestamp}.".encode("utf-8") + payload
    expected = base64.b64encode(
        hmac.new(_svix_secret_bytes(secret), signed_content, hashlib.sha256).digest()
    ).decode("ascii")

    for candidate in signature_header.split(" "):
        version, _, value = candidate.partition(",")
        if version == "v1" and hmac.compare_digest(value, expected):
            return
    raise WebhookSignatureError("No matching signature")


def verify_hmac_signature(secret: str, *, payload: bytes, signature: str | None) -> None:
    """Validate a base64 HMAC-SHA256 of the raw body (DocuSign Connect)."""
    if not signature:
        raise WebhookSignatureError("Missing signature header")
    expected = base64.b64encode(
        hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    ).decode("ascii")
    if not hmac.compare_digest(signature, expected):
        raise WebhookSignatureError("Signature mismatch")
