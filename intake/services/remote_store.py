from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Protocol, TypeVar

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from intake.core.exceptions import TransientStoreError
from intake.models.remote_submission import RemoteSubmission
from intake.schemas.submission import StoredSubmission, SubmissionStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RemoteStoreClient(Protocol):
    async def write(self, submission: StoredSubmission) -> None:
        """Upsert ``submission``. Raises TransientStoreError when unreachable."""

    async def delete(self, submission_id: str) -> bool: ...

    async def list_recent(self, limit: int = 500) -> list[StoredSubmission]: ...

    async def ping(self) -> None: ...


async def with_timeout(awaitable: Awaitable[T], timeout: float | None) -> T:
    """Await a remote call, turning a timeout into TransientStoreError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise TransientStoreError(f"Remote store timed out after {timeout}s") from exc


def _row_from_submission(submission: StoredSubmission) -> RemoteSubmission:
    data = submission.data
    return RemoteSubmission(
        id=submission.id,
        created_at=submission.timestamp,
        full_name=data.get("fullName") or "",
        phone=data.get("phone") or "",
        email=data.get("email") or None,
        wilaya=data.get("wilaya") or "",
        profession=data.get("profession") or None,
        custom_profession=data.get("customProfession") or None,
        monthly_income_range=data.get("monthlyIncomeRange") or None,
        salary_receive_method=data.get("salaryReceiveMethod") or "",
        financing_type=data.get("financingType") or "",
        requested_amount=int(data.get("requestedAmount") or 0),
        is_existing_customer=data.get("isExistingCustomer") or None,
        preferred_contact_time=data.get("preferredContactTime") or None,
        notes=data.get("notes") or None,
        status=SubmissionStatus.SYNCED.value,
        retry_count=submission.retry_count,
        ip_address=submission.ip,
        user_agent=submission.user_agent,
        payload=dict(data),
    )


def _submission_from_row(row: RemoteSubmission) -> StoredSubmission:
    payload: dict[str, Any] = dict(row.payload or {})
    return StoredSubmission(
        id=row.id,
        timestamp=row.created_at,
        data=payload,
        status=SubmissionStatus.SYNCED,
        retry_count=row.retry_count or 0,
        synced_to_remote=True,
        updated_at=row.updated_at,
        ip=row.ip_address,
        user_agent=row.user_agent,
    )


class SqlRemoteStore:
    """Remote copy of submissions in a SQL database reached through SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def write(self, submission: StoredSubmission) -> None:
        try:
            async with self._session_factory() as session:
                await session.merge(_row_from_submission(submission))
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise TransientStoreError(f"Remote write failed for {submission.id}: {exc}") from exc

    async def delete(self, submission_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                row = await session.get(RemoteSubmission, submission_id)
                if row is None:
                    return False
                await session.delete(row)
                await session.commit()
                return True
        except (SQLAlchemyError, OSError) as exc:
            raise TransientStoreError(f"Remote delete failed for {submission_id}: {exc}") from exc

    async def list_recent(self, limit: int = 500) -> list[StoredSubmission]:
        stmt = select(RemoteSubmission).order_by(RemoteSubmission.created_at.desc()).limit(limit)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
        except (SQLAlchemyError, OSError) as exc:
            raise TransientStoreError(f"Remote listing failed: {exc}") from exc
        return [_submission_from_row(row) for row in rows]

    async def ping(self) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            raise TransientStoreError(f"Remote store unreachable: {exc}") from exc


class DisabledRemoteStore:
    """Stand-in used when no remote database is configured; every write is retryable."""

    async def write(self, submission: StoredSubmission) -> None:
        raise TransientStoreError("Remote store is not configured")

    async def delete(self, submission_id: str) -> bool:
        return False

    async def list_recent(self, limit: int = 500) -> list[StoredSubmission]:
        return []

    async def ping(self) -> None:
        raise TransientStoreError("Remote store is not configured")
