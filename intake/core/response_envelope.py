from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response


def _success_code(status_code: int) -> str:
    mapping = {
        200: "ok",
        201: "created",
        202: "accepted",
    }
    return mapping.get(status_code, "ok")


def _success_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Success"


def _build_success_envelope(data: Any, status_code: int) -> dict[str, Any]:
    return {
        "code": _success_code(status_code),
        "message": _success_message(status_code),
        "data": data,
        "details": {},
    }


def _is_enveloped(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    if "code" in payload and "message" in payload:
        return "data" in payload or "details" in payload
    return False


def _rebuild(response: Response, content: dict[str, Any], status_code: int) -> JSONResponse:
    new_response = JSONResponse(status_code=status_code, content=content)
    for key, value in response.headers.items():
        if key.lower() in {"content-length", "content-type"}:
            continue
        new_response.headers[key] = value
    return new_response


class ResponseEnvelopeMiddleware(BaseHTTPMiddleware):
    """Wrap successful JSON responses as ``{code, message, data, details}``.

    Streams (SSE) and file downloads pass through untouched.
    """

    async def dispatch(self, request, call_next) -> Response:
        response = await call_next(request)

        if response.status_code < 200 or response.status_code >= 300:
            return response

        # Convert 204 to a 200 success envelope for frontend consistency
        if response.status_code == 204:
            return _rebuild(response, _build_success_envelope(None, 200), 200)

        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("application/json"):
            return response
        if "attachment" in response.headers.get("content-disposition", ""):
            return response

        raw_body = b""
        async for chunk in response.body_iterator:
            raw_body += chunk if isinstance(chunk, bytes) else chunk.encode("utf-8")

        try:
            payload = json.loads(raw_body) if raw_body else None
        except ValueError:
            return Response(
                content=raw_body,
                status_code=response.status_code,
                headers=dict(response.headers),
                media_type=response.media_type,
            )

        if _is_enveloped(payload):
            return _rebuild(response, payload, response.status_code)
        return _rebuild(
            response, _build_success_envelope(payload, response.status_code), response.status_code
        )


def register_response_envelope(app) -> None:
    app.add_middleware(ResponseEnvelopeMiddleware)
