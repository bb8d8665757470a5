import pytest
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

from app.core.errors import ServiceError, bad_request, code_from_message, conflict, not_found, strip_tag
from app.core.response_envelope import _is_enveloped, register_response_envelope
from app.db.url import normalize_database_url
from app.middlewares.trust_proxies import resolve_client_ip
from app.models.types import EncryptedString


def test_service_error_code_comes_from_tag() -> None:
    exc = not_found("[USER_NOT_FOUND] User not found")
    assert exc.status_code == 404
    assert exc.code == "USER_NOT_FOUND"
    assert str(exc) == "[USER_NOT_FOUND] User not found"


def test_service_error_without_tag_uses_status_default() -> None:
    assert bad_request("plain message").code == "BAD_REQUEST"
    assert conflict("already there").code == "CONFLICT"
    assert ServiceError(502, "upstream").code == "INTERNAL_ERROR"


def test_strip_tag() -> None:
    assert strip_tag("[SLUG_EXISTS] Slug taken") == "Slug taken"
    assert strip_tag("No tag here") == "No tag here"
    assert code_from_message("[lowercase] nope", 403) == "FORBIDDEN"


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"success": True, "message": "Deleted"}, True),
        ({"success": True, "message": "OK", "data": [1]}, True),
        ({"success": True, "message": "Status updated", "new_status": "approved"}, False),
        ({"message": "no success key"}, False),
        ([{"success": True}], False),
    ],
)
def test_envelope_detection(payload, expected) -> None:
    assert _is_enveloped(payload) is expected


def _envelope_app() -> TestClient:
    app = FastAPI()
    register_response_envelope(app)

    @app.get("/items")
    async def items():
        return [{"id": 1}]

    @app.get("/result")
    async def result():
        return {"success": True, "message": "Done", "previous_status": "draft"}

    @app.get("/ack")
    async def ack():
        return {"success": True, "message": "Acknowledged"}

    @app.delete("/items/1", status_code=204)
    async def delete_item():
        return None

    @app.get("/text")
    async def text():
        return PlainTextResponse("pong")

    return TestClient(app)


def test_envelope_wraps_plain_payloads() -> None:
    client = _envelope_app()

    assert client.get("/items").json() == {"success": True, "message": "OK", "data": [{"id": 1}]}
    assert client.get("/result").json()["data"]["previous_status"] == "draft"
    assert client.get("/ack").json() == {"success": True, "message": "Acknowledged", "data": None}


def test_envelope_turns_no_content_into_ok() -> None:
    response = _envelope_app().delete("/items/1")
    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "OK", "data": None}


def test_envelope_leaves_non_json_alone() -> None:
    response = _envelope_app().get("/text")
    assert response.text == "pong"


@pytest.mark.parametrize(
    ("forwarded_for", "proxies", "expected"),
    [
        ("203.0.113.7, 10.0.0.2", 1, "203.0.113.7"),
        ("198.51.100.1, 203.0.113.7, 10.0.0.2", 1, "203.0.113.7"),
        ("203.0.113.7, 10.0.0.3, 10.0.0.2", 2, "203.0.113.7"),
        ("10.0.0.2", 1, None),
        ("", 1, None),
        ("203.0.113.7, 10.0.0.2", 0, None),
    ],
)
def test_resolve_client_ip(forwarded_for, proxies, expected) -> None:
    assert resolve_client_ip(forwarded_for, proxies) == expected


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("postgres://u:p@db:5432/app", "postgresql+psycopg://u:p@db:5432/app"),
        ("postgresql+asyncpg://u:p@db/app?ssl=true", "postgresql+psycopg://u:p@db/app?sslmode=require"),
        ("postgresql://u:p@db/app?ssl=false", "postgresql+psycopg://u:p@db/app?sslmode=disable"),
        ("postgresql://u:p@db/app?ssl=true&sslmode=verify-full", "postgresql+psycopg://u:p@db/app?sslmode=verify-full"),
        ("postgresql://u:p@db/app?pgbouncer=true&connection_limit=1", "postgresql+psycopg://u:p@db/app"),
        ("", ""),
    ],
)
def test_normalize_database_url(url, expected) -> None:
    assert normalize_database_url(url) == expected


def test_encrypted_string_hides_plaintext() -> None:
    column_type = EncryptedString(secret="unit-test-secret")

    stored = column_type.process_bind_param("s3cret-pdf-password", dialect=None)

    assert b"s3cret" not in stored
    assert column_type.process_result_value(stored, dialect=None) == "s3cret-pdf-password"
    assert column_type.process_bind_param(None, dialect=None) is None
