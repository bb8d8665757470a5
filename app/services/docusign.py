"""Minimal DocuSign eSignature REST client.

Authenticates with the JWT grant and covers the envelope calls the offer-letter
workflow needs: create+send, status lookup, embedded signing view and void.
"""

from __future__ import annotations

import base64
import logging
import time
from functools import lru_cache
from typing import Any

import httpx
from jose import jwt

from app.core.settings import settings

logger = logging.getLogger(__name__)

_TOKEN_LIFETIME_SECONDS = 3600
_TOKEN_REFRESH_MARGIN_SECONDS = 300


class DocuSignError(RuntimeError):
    pass


class DocuSignClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        auth_server: str | None = None,
        integration_key: str | None = None,
        user_id: str | None = None,
        account_id: str | None = None,
        private_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.docusign_base_url).rstrip("/")
        self.auth_server = auth_server or settings.docusign_auth_server
        self.integration_key = integration_key or settings.docusign_integration_key
        self.user_id = user_id or settings.docusign_user_id
        self.account_id = account_id or settings.docusign_account_id
        self._private_key = private_key
        self.timeout = timeout or settings.docusign_timeout_seconds
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    @property
    def is_configured(self) -> bool:
        return bool(self.integration_key and self.user_id and self.account_id)

    def _load_private_key(self) -> str:
        if self._private_key:
            return self._private_key
        if settings.docusign_private_key:
            return settings.docusign_private_key.replace("\\n", "\n")
        if settings.docusign_private_key_path:
            with open(settings.docusign_private_key_path, "r", encoding="utf-8") as key_file:
                return key_file.read()
        raise DocuSignError("DocuSign private key not configured")

    def _build_assertion(self, now: int) -> str:
        claims = {
            "iss": self.integration_key,
            "sub": self.user_id,
            "aud": self.auth_server,
            "iat": now,
            "exp": now + _TOKEN_LIFETIME_SECONDS,
            "scope": "signature impersonation",
        }
        return jwt.encode(claims, self._load_private_key(), algorithm="RS256")

    async def _get_access_token(self) -> str:
        now = int(time.time())
        if self._access_token and now < self._token_expires_at - _TOKEN_REFRESH_MARGIN_SECONDS:
            return self._access_token
        if not self.is_configured:
            raise DocuSignError("DocuSign integration is not configured")

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"https://{self.auth_server}/oauth/token",
                data={
                    "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                    "assertion": self._build_assertion(now),
                },
            )
        if response.status_code != 200:
            raise DocuSignError(f"Authentication failed: {response.status_code} {response.text}")
        body = response.json()
        self._access_token = body["access_token"]
        self._token_expires_at = now + int(body.get("expires_in", _TOKEN_LIFETIME_SECONDS))
        return self._access_token

    async def _request(self, method: str, path: str, *, json: dict[str, Any] | None = None) -> dict[str, Any]:
        token = await self._get_access_token()
        url = f"{self.base_url}/v2.1/accounts/{self.account_id}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method,
                    url,
                    json=json,
                    headers={"Authorization": f"Bearer {token}"},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DocuSignError(
                f"DocuSign {method} {path} failed: {exc.response.status_code} {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DocuSignError(f"DocuSign {method} {path} failed: {exc}") from exc
        return response.json() if response.content else {}

    async def create_and_send_envelope(
        self,
        *,
        document_html: str,
        document_name: str,
        email_subject: str,
        signer_email: str,
        signer_name: str,
        client_user_id: str,
        email_blurb: str | None = None,
    ) -> str:
        """Create an envelope in ``sent`` state and return its id."""
        definition: dict[str, Any] = {
            "emailSubject": email_subject,
            "documents": [
                {
                    "documentBase64": base64.b64encode(document_html.encode("utf-8")).decode("ascii"),
                    "name": document_name,
                    "fileExtension": "html",
                    "documentId": "1",
                }
            ],
            "recipients": {
                "signers": [
                    {
                        "email": signer_email,
                        "name": signer_name,
                        "recipientId": "1",
                        "routingOrder": "1",
                        "clientUserId": client_user_id,
                        "tabs": {
                            "signHereTabs": [
                                {
                                    "anchorString": "/sig1/",
                                    "anchorUnits": "pixels",
                                    "anchorXOffset": "0",
                                    "anchorYOffset": "0",
                                }
                            ]
                        },
                    }
                ]
            },
            "status": "sent",
        }
        if email_blurb:
            definition["emailBlurb"] = email_blurb
        body = await self._request("POST", "/envelopes", json=definition)
        envelope_id = body.get("envelopeId")
        if not envelope_id:
            raise DocuSignError("DocuSign did not return an envelope id")
        logger.info("DocuSign envelope %s created for %s", envelope_id, signer_email)
        return envelope_id

    async def get_envelope_status(self, envelope_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/envelopes/{envelope_id}")

    async def create_recipient_view(
        self,
        envelope_id: str,
        *,
        signer_email: str,
        signer_name: str,
        client_user_id: str,
        return_url: str | None = None,
    ) -> str:
        body = await self._request(
            "POST",
            f"/envelopes/{envelope_id}/views/recipient",
            json={
                "authenticationMethod": "none",
                "email": signer_email,
                "userName": signer_name,
                "clientUserId": client_user_id,
                "returnUrl": return_url or settings.docusign_return_url,
            },
        )
        url = body.get("url")
        if not url:
            raise DocuSignError("DocuSign did not return a signing url")
        return url

    async def void_envelope(self, envelope_id: str, reason: str) -> None:
        await self._request(
            "PUT",
            f"/envelopes/{envelope_id}",
            json={"status": "voided", "voidedReason": reason},
        )


@lru_cache(maxsize=1)
def get_docusign_client() -> DocuSignClient:
    return DocuSignClient()
