from __future__ import annotations

import hmac
from typing import Any

from jose import JWTError, jwt

from intake.core.settings import settings

ADMIN_ROLE = "admin"


def decode_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise ValueError("Invalid token") from exc


def verify_admin_token(token: str) -> dict[str, Any]:
    """Decode ``token`` and require the admin role issued by the login service."""
    payload = decode_token(token)
    if payload.get("role") != ADMIN_ROLE:
        raise ValueError("Token does not grant admin access")
    return payload


def verify_internal_token(candidate: str | None) -> bool:
    expected = settings.internal_api_token
    if not expected or not candidate:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8"))
