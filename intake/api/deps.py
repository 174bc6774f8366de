from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from intake.core.security import verify_admin_token, verify_internal_token
from intake.services.container import ServiceContainer

ADMIN_COOKIE = "admin-token"


@dataclass(slots=True)
class AdminIdentity:
    subject: str
    claims: dict


bearer_scheme = HTTPBearer(auto_error=False)


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return container


def _admin_from_token(token: Optional[str]) -> AdminIdentity | None:
    if not token:
        return None
    try:
        claims = verify_admin_token(token)
    except ValueError:
        return None
    return AdminIdentity(subject=str(claims.get("sub") or "admin"), claims=claims)


def _resolve_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is not None and credentials.scheme.lower() == "bearer":
        return credentials.credentials
    return request.cookies.get(ADMIN_COOKIE)


async def require_admin(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AdminIdentity:
    token = _resolve_token(request, credentials)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    admin = _admin_from_token(token)
    if admin is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return admin


async def require_internal_or_admin(
    request: Request,
    internal_token: Optional[str] = Header(default=None, alias="X-Internal-Token"),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    if verify_internal_token(internal_token):
        return "internal"
    admin = _admin_from_token(_resolve_token(request, credentials))
    if admin is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authorized")
    return admin.subject
