from __future__ import annotations

from functools import lru_cache
from typing import Any

from jose import JWTError, jwt

from app.core.settings import settings


class JWTKeyError(RuntimeError):
    pass


@lru_cache(maxsize=1)
def _load_public_key() -> str:
    if settings.auth_jwt_public_key:
        # Keys passed through env vars usually carry escaped newlines
        return settings.auth_jwt_public_key.replace("\\n", "\n")
    if settings.auth_jwt_public_key_path:
        return _read_key(settings.auth_jwt_public_key_path)
    raise JWTKeyError("Identity provider public key not configured")


def _read_key(path: str) -> str:
    with open(path, "r", encoding="utf-8") as key_file:
        return key_file.read()


def decode_token(token: str) -> dict[str, Any]:
    """Verify an identity-provider session token and return its claims."""
    public_key = _load_public_key()
    options = {"verify_aud": settings.auth_jwt_audience is not None}
    try:
        return jwt.decode(
            token,
            public_key,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
            issuer=settings.auth_jwt_issuer,
            options=options,
        )
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
