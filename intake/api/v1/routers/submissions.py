import json
import logging
from datetime import datetime, timezone
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse

from intake.api import deps
from intake.core.exceptions import TransientStoreError
from intake.core.limiter import limiter
from intake.core.logging import get_audit_logger
from intake.core.settings import settings
from intake.schemas.submission import (
    FILE_FORMAT_VERSION,
    DeleteSubmissionResponse,
    IntakeResponse,
    LoanApplicationIn,
    StoredSubmission,
    SubmissionListResponse,
    SubmissionStats,
    SubmissionStatus,
)
from intake.services.container import ServiceContainer
from intake.services.remote_store import with_timeout
from intake.services.reports import submissions_to_csv, submissions_to_text
from intake.services.submission_writer import RequestMetadata

router = APIRouter(prefix="/submissions", tags=["submissions"])
logger = logging.getLogger(__name__)
audit_logger = get_audit_logger()


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


async def build_stats(container: ServiceContainer) -> SubmissionStats:
    stats = await container.local_store.stats()
    return SubmissionStats(**stats, queue_length=len(container.queue))


async def _merged_submissions(container: ServiceContainer, limit: int) -> tuple[list[StoredSubmission], str, int, int]:
    local = await container.local_store.read_all()
    try:
        remote = await with_timeout(
            container.remote.list_recent(limit),
            container.settings.remote_timeout_seconds,
        )
        source = "merged"
    except TransientStoreError as exc:
        logger.info("Listing from local store only: %s", exc)
        remote = []
        source = "local"

    merged = {submission.id: submission for submission in local}
    # Remote rows win for ids present in both stores.
    for submission in remote:
        merged[submission.id] = submission
    ordered = sorted(merged.values(), key=lambda item: item.timestamp, reverse=True)
    return ordered, source, len(local), len(remote)


@router.post("", response_model=IntakeResponse, summary="Submit a loan application")
@limiter.limit(lambda: settings.intake_rate_limit)
async def create_submission(
    payload: LoanApplicationIn,
    request: Request,
    container: ServiceContainer = Depends(deps.get_container),
) -> IntakeResponse:
    metadata = RequestMetadata(ip=_client_ip(request), user_agent=request.headers.get("user-agent"))
    result = await container.writer.submit(payload.to_wire(), metadata)
    return IntakeResponse(
        success=True,
        submission_id=result.submission_id,
        persisted=result.persisted,
        duplicate=result.duplicate,
        persisted_to=result.persisted_to,
        message=result.message,
    )


@router.get("", response_model=SubmissionListResponse, summary="List submissions from both stores")
async def list_submissions(
    status_filter: SubmissionStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=500, ge=1, le=5000),
    container: ServiceContainer = Depends(deps.get_container),
    _: deps.AdminIdentity = Depends(deps.require_admin),
) -> SubmissionListResponse:
    submissions, source, local_count, remote_count = await _merged_submissions(container, limit)
    if status_filter is not None:
        submissions = [item for item in submissions if item.status == status_filter]
    submissions = submissions[:limit]
    return SubmissionListResponse(
        items=[item.to_wire() for item in submissions],
        total=len(submissions),
        source=source,
        local_count=local_count,
        remote_count=remote_count,
    )


@router.get("/stats", response_model=SubmissionStats, summary="Local store statistics")
async def submission_stats(
    container: ServiceContainer = Depends(deps.get_container),
    _: deps.AdminIdentity = Depends(deps.require_admin),
) -> SubmissionStats:
    return await build_stats(container)


@router.get(
    "/export",
    response_class=StreamingResponse,
    summary="Download a backup of the local store",
)
async def export_submissions(
    export_format: Literal["csv", "text", "json"] = Query(default="csv", alias="format"),
    container: ServiceContainer = Depends(deps.get_container),
    _: deps.AdminIdentity = Depends(deps.require_admin),
) -> StreamingResponse:
    submissions = await container.local_store.read_all()
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    if export_format == "csv":
        content = submissions_to_csv(submissions)
        media_type, extension = "text/csv", "csv"
    elif export_format == "text":
        content = submissions_to_text(submissions)
        media_type, extension = "text/plain; charset=utf-8", "txt"
    else:
        content = json.dumps(
            {
                "version": FILE_FORMAT_VERSION,
                "exportedAt": datetime.now(timezone.utc).isoformat(),
                "totalCount": len(submissions),
                "submissions": [item.to_wire() for item in submissions],
            },
            ensure_ascii=False,
            indent=2,
        )
        media_type, extension = "application/json", "json"
    filename = f"submissions-{stamp}.{extension}"
    return StreamingResponse(
        iter([content]),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.delete("/{submission_id}", response_model=DeleteSubmissionResponse, summary="Delete a submission")
async def delete_submission(
    submission_id: str,
    request: Request,
    container: ServiceContainer = Depends(deps.get_container),
    admin: deps.AdminIdentity = Depends(deps.require_admin),
) -> DeleteSubmissionResponse:
    result = await container.writer.delete(submission_id)
    if not result.found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Submission not found")
    audit_logger.info(
        "submission.deleted",
        extra={
            "submission_id": submission_id,
            "actor": admin.subject,
            "local": result.local,
            "remote": result.remote,
            "dequeued": result.dequeued,
            "ip": _client_ip(request),
        },
    )
    return DeleteSubmissionResponse(
        submission_id=submission_id,
        deleted=True,
        local=result.local,
        remote=result.remote,
    )
