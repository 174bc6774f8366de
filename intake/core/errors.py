from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from intake.core.exceptions import IntakeError, PersistentStoreError, SyncExhausted, TransientStoreError

logger = logging.getLogger(__name__)

_HTTP_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "unprocessable_entity",
    429: "rate_limited",
    503: "service_unavailable",
}

# Most specific class first.
_INTAKE_ERRORS: list[tuple[type[IntakeError], int, str, str]] = [
    (PersistentStoreError, 503, "storage_unavailable", "Submission could not be stored, please retry"),
    (TransientStoreError, 503, "remote_unavailable", "Remote store is unreachable, please retry"),
    (SyncExhausted, 502, "sync_exhausted", "Submission could not be synchronized"),
]

_REQUEST_SECTIONS = {"body", "query", "path", "header", "cookie"}


def _phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def _as_details(details: Any) -> dict:
    if details is None:
        return {}
    if isinstance(details, dict):
        return details
    if isinstance(details, list):
        return {"errors": details}
    return {"detail": str(details)}


def error_response(status_code: int, code: str, message: str, details: Any = None) -> JSONResponse:
    payload = {"code": code, "message": message, "data": None, "details": _as_details(details)}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def _field_path(loc: Any) -> str:
    return ".".join(str(part) for part in loc or [] if part not in _REQUEST_SECTIONS)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    detail = exc.detail
    if isinstance(detail, dict):
        code = detail.get("code") or code
        message = detail.get("message") or detail.get("detail") or _phrase(exc.status_code)
        details = detail.get("details", {k: v for k, v in detail.items() if k not in {"code", "message"}})
    elif isinstance(detail, str):
        message, details = detail, {"detail": detail}
    else:
        message, details = _phrase(exc.status_code), detail

    response = error_response(exc.status_code, code, message, details)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 with the first problem as message and every problem keyed by form field."""
    errors = exc.errors()
    fields: dict[str, str] = {}
    for error in errors:
        fields.setdefault(_field_path(error.get("loc")) or "__root__", str(error.get("msg") or "invalid"))

    message = "Validation failed"
    if fields:
        first_field, first_msg = next(iter(fields.items()))
        message = first_msg if first_field == "__root__" else f"{first_field}: {first_msg}"
    return error_response(422, "validation_error", message, {"fields": fields, "errors": errors})


async def intake_exception_handler(request: Request, exc: IntakeError) -> JSONResponse:
    for exc_type, status_code, code, message in _INTAKE_ERRORS:
        if isinstance(exc, exc_type):
            logger.error("%s on %s %s: %s", code, request.method, request.url.path, exc)
            return error_response(status_code, code, message, {"detail": str(exc)})
    logger.error("Intake failure on %s %s: %s", request.method, request.url.path, exc)
    return error_response(500, "intake_error", "Submission processing failed", {"detail": str(exc)})


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    response = error_response(429, "rate_limited", "Too many submissions, please wait", getattr(exc, "detail", None))
    headers = getattr(exc, "headers", None)
    if isinstance(headers, dict):
        response.headers.update(headers)
    return response


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "internal_server_error", "Internal server error")


def register_exception_handlers(app) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(IntakeError, intake_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
