from fastapi import APIRouter, Body, Depends

from intake.api import deps
from intake.api.v1.routers.submissions import build_stats
from intake.schemas.submission import (
    DrainReportOut,
    SyncStatusResponse,
    SyncTriggerRequest,
    SyncTriggerResponse,
)
from intake.services.container import ServiceContainer

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("", response_model=SyncStatusResponse, summary="Sync queue status")
async def sync_status(
    container: ServiceContainer = Depends(deps.get_container),
    _: deps.AdminIdentity = Depends(deps.require_admin),
) -> SyncStatusResponse:
    return SyncStatusResponse(stats=await build_stats(container), queue=container.queue.items())


@router.post("", response_model=SyncTriggerResponse, summary="Drain the sync queue now")
async def trigger_sync(
    payload: SyncTriggerRequest | None = Body(default=None),
    container: ServiceContainer = Depends(deps.get_container),
    _: deps.AdminIdentity = Depends(deps.require_admin),
) -> SyncTriggerResponse:
    force = payload.force if payload else False
    report = await container.queue.drain(force=force)
    return SyncTriggerResponse(
        result=DrainReportOut(**report.as_dict()),
        stats=await build_stats(container),
    )
