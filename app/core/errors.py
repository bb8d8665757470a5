from __future__ import annotations

import functools
import logging
import re
from http import HTTPStatus
from typing import Any, Awaitable, Callable

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

_TAG_PATTERN = re.compile(r"^\[([A-Z0-9_]+)\]\s*")


def _default_code(status_code: int) -> str:
    mapping = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        429: "RATE_LIMITED",
    }
    return mapping.get(status_code, "INTERNAL_ERROR")


def _default_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def code_from_message(message: str, status_code: int = 500) -> str:
    """Return the bracketed tag at the start of ``message`` or a status default."""
    match = _TAG_PATTERN.match(message or "")
    if match:
        return match.group(1)
    return _default_code(status_code)


def strip_tag(message: str) -> str:
    return _TAG_PATTERN.sub("", message or "", count=1)


class ServiceError(Exception):
    """Domain failure carrying an HTTP status.

    Messages start with a bracketed tag, e.g. ``[USER_NOT_FOUND] User not found``;
    the tag becomes the response ``code``.
    """

    def __init__(self, status_code: int, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.details = details or {}

    @property
    def code(self) -> str:
        return code_from_message(self.message, self.status_code)

    def __str__(self) -> str:
        return self.message


def bad_request(message: str, details: dict | None = None) -> ServiceError:
    return ServiceError(400, message, details)


def unauthorized(message: str = "[UNAUTHORIZED] Missing user context") -> ServiceError:
    return ServiceError(401, message)


def forbidden(message: str = "[FORBIDDEN] Not allowed") -> ServiceError:
    return ServiceError(403, message)


def not_found(message: str, details: dict | None = None) -> ServiceError:
    return ServiceError(404, message, details)


def conflict(message: str, details: dict | None = None) -> ServiceError:
    return ServiceError(409, message, details)


def internal_error(message: str) -> ServiceError:
    return ServiceError(500, message)


AsyncOperation = Callable[..., Awaitable[Any]]


def wrap_unexpected(tag: str, message: str) -> Callable[[AsyncOperation], AsyncOperation]:
    """Let domain errors through; log anything else and raise it as a tagged 500.

    ``StaleDataError`` also passes so the global handler can answer 409.
    """

    def decorator(func: AsyncOperation) -> AsyncOperation:
        func_logger = logging.getLogger(func.__module__)

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except (ServiceError, StaleDataError):
                raise
            except Exception as exc:
                func_logger.exception("%s failed", func.__name__)
                raise internal_error(f"[{tag}] {message}") from exc

        return wrapper

    return decorator


def _normalize_details(details: Any) -> dict:
    if details is None:
        return {}
    if isinstance(details, dict):
        return details
    if isinstance(details, list):
        return {"errors": details}
    if isinstance(details, str):
        return {"detail": details}
    return {"detail": str(details)}


def _build_response(
    status_code: int,
    code: str,
    message: str,
    details: Any | None = None,
) -> JSONResponse:
    payload = {
        "success": False,
        "code": code,
        "error": message,
        "details": _normalize_details(details),
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def _parse_http_exception_detail(detail: Any, status_code: int) -> tuple[str, str, dict]:
    code = _default_code(status_code)
    message = _default_message(status_code)
    details: dict = {}

    if isinstance(detail, dict):
        message = detail.get("message") or detail.get("detail") or detail.get("error") or message
        code = detail.get("code") or code_from_message(message, status_code)
        if "details" in detail:
            details = _normalize_details(detail.get("details"))
        else:
            remainder = {
                k: v for k, v in detail.items() if k not in {"code", "message", "detail", "error"}
            }
            details = remainder
        return code, strip_tag(message), details

    if isinstance(detail, list):
        return code, message, {"errors": detail}

    if isinstance(detail, str):
        return code_from_message(detail, status_code), strip_tag(detail), {}

    return code, message, {"detail": str(detail)}


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Service error %s on %s %s", exc.code, request.method, request.url.path)
    return _build_response(exc.status_code, exc.code, strip_tag(exc.message), exc.details)


async def stale_data_exception_handler(request: Request, exc: StaleDataError) -> JSONResponse:
    return _build_response(
        status_code=409,
        code="CONCURRENT_UPDATE",
        message="Resource was modified by another request",
        details={},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message, details = _parse_http_exception_detail(exc.detail, exc.status_code)
    return _build_response(exc.status_code, code, message, details)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = "Validation failed"
    if errors:
        first = errors[0] or {}
        loc = first.get("loc") or []
        msg = first.get("msg") or "Validation failed"
        # Drop the request section (body/query/path) from the location
        loc_parts = [str(part) for part in loc if part not in {"body", "query", "path"}]
        if loc_parts:
            message = f"{'.'.join(loc_parts)}: {msg}"
        else:
            message = str(msg)
    return _build_response(
        status_code=400,
        code="VALIDATION_ERROR",
        message=message,
        details={"errors": errors},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _build_response(
        status_code=500,
        code="INTERNAL_SERVER_ERROR",
        message="Internal server error",
        details={},
    )


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    details = getattr(exc, "detail", None)
    response = _build_response(
        status_code=429,
        code="RATE_LIMITED",
        message=_default_message(429),
        details=details,
    )
    headers = getattr(exc, "headers", None)
    if isinstance(headers, dict):
        response.headers.update(headers)
    return response


def register_exception_handlers(app) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(StaleDataError, stale_data_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
