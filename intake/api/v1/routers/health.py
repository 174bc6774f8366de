from fastapi import APIRouter, Depends

from intake.api import deps
from intake.core.health import (
    health_payload,
    live_payload,
    ready_payload,
    status_summary_payload,
)
from intake.core.limiter import limiter
from intake.services.container import ServiceContainer

router = APIRouter(tags=["health"])


@router.get("/health/live", summary="Service liveness check")
@limiter.exempt
async def health_live() -> dict:
    return await live_payload()


@router.get("/health/ready", summary="Service readiness check")
@limiter.exempt
async def health_ready(container: ServiceContainer = Depends(deps.get_container)) -> dict:
    return await ready_payload(container)


@router.get("/health", summary="Backward-compatible readiness check")
@limiter.exempt
async def read_health(container: ServiceContainer = Depends(deps.get_container)) -> dict:
    return await health_payload(container)


@router.get("/status/summary", tags=["status"], summary="Service status summary")
@limiter.exempt
async def status_summary(container: ServiceContainer = Depends(deps.get_container)) -> dict:
    return await status_summary_payload(container)
