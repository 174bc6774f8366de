from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from intake.api import deps
from intake.schemas.submission import BroadcastRequest, BroadcastResponse
from intake.services.container import ServiceContainer

router = APIRouter(prefix="/realtime", tags=["realtime"])


@router.get("/submissions", summary="Stream submission events (SSE)")
async def stream_submissions(
    container: ServiceContainer = Depends(deps.get_container),
    admin: deps.AdminIdentity = Depends(deps.require_admin),
):
    session = container.broadcaster.open(subscriber=admin.subject)
    headers = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}
    return StreamingResponse(
        container.broadcaster.stream(session),
        media_type="text/event-stream",
        headers=headers,
    )


@router.post("/submissions", response_model=BroadcastResponse, summary="Push a submission event to dashboards")
async def broadcast_submission(
    payload: BroadcastRequest,
    container: ServiceContainer = Depends(deps.get_container),
    _: str = Depends(deps.require_internal_or_admin),
) -> BroadcastResponse:
    if payload.submission_id:
        submission = await container.local_store.get(payload.submission_id)
        if submission is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Submission not found")
        delivered = container.broadcaster.publish_submission(submission)
    elif payload.submission:
        delivered = container.broadcaster.publish_submission(payload.submission)
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide submissionId or submission",
        )
    return BroadcastResponse(
        delivered=delivered,
        active_connections=container.broadcaster.active_connections,
    )
