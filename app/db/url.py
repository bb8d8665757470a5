from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_PSYCOPG_SCHEME = "postgresql+psycopg"
_POSTGRES_SCHEMES = {"postgres", "postgresql", "postgresql+asyncpg", "postgresql+psycopg2"}
# pooler/ORM hints some hosts append that libpq rejects
_NON_LIBPQ_PARAMS = {"pgbouncer", "connection_limit", "pool_timeout", "schema"}
_SSL_OFF = {"0", "false", "no", "off", "disable"}
_SSL_MODES = {"allow", "prefer", "require", "verify-ca", "verify-full"}


def _sslmode_from_flag(value: str) -> str:
    flag = value.lower().strip()
    if flag in _SSL_OFF:
        return "disable"
    if flag in _SSL_MODES:
        return flag
    return "require"


def normalize_database_url(url: str) -> str:
    """Return a ``postgresql+psycopg`` URL with libpq-compatible query options."""
    url = (url or "").strip()
    if not url:
        return url

    parts = urlsplit(url)
    scheme = _PSYCOPG_SCHEME if parts.scheme in _POSTGRES_SCHEMES else parts.scheme

    query: dict[str, str] = {}
    ssl_flag: str | None = None
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        lowered = key.lower()
        if lowered == "ssl":
            ssl_flag = value
        elif lowered not in _NON_LIBPQ_PARAMS:
            query[key] = value
    if ssl_flag is not None and "sslmode" not in query:
        query["sslmode"] = _sslmode_from_flag(ssl_flag)

    return urlunsplit((scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))
