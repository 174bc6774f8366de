from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from pydantic import TypeAdapter, ValidationError

from intake.core.exceptions import PersistentStoreError
from intake.schemas.submission import FILE_FORMAT_VERSION, StoredSubmission, SubmissionStatus
from intake.services.atomic_files import atomic_write_json, file_signature, read_json

logger = logging.getLogger(__name__)

_datetime_adapter = TypeAdapter(datetime)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return _datetime_adapter.validate_python(value)
    except ValidationError:
        return None


@dataclass(slots=True)
class StoreSnapshot:
    count: int
    latest: StoredSubmission | None

    @property
    def latest_id(self) -> str | None:
        return self.latest.id if self.latest else None


@dataclass
class _Document:
    created_at: datetime
    last_updated: datetime
    submissions: list[StoredSubmission] = field(default_factory=list)
    # Records this version cannot parse are carried through writes untouched.
    unparsed: list[Any] = field(default_factory=list)
    corrupt: bool = False

    @classmethod
    def empty(cls, now: datetime, *, corrupt: bool = False) -> "_Document":
        return cls(created_at=now, last_updated=now, corrupt=corrupt)

    def index_of(self, submission_id: str) -> int | None:
        for idx, existing in enumerate(self.submissions):
            if existing.id == submission_id:
                return idx
        return None


class DurableLocalStore:
    """Authoritative JSON file of every submission, newest first.

    Each mutation is a read-modify-write of the whole file followed by an
    atomic rename. Mutations within this process are serialized; the cycle
    is not safe across processes.
    """

    def __init__(self, path: Path, *, clock: Callable[[], datetime] | None = None) -> None:
        self.path = Path(path)
        self._clock = clock or _utcnow
        self._lock = asyncio.Lock()
        self._snapshot_cache: tuple[tuple[int, int], StoreSnapshot] | None = None

    # -- sync helpers, run in a worker thread --

    def _load(self) -> _Document:
        now = self._clock()
        try:
            raw = read_json(self.path)
        except FileNotFoundError:
            return _Document.empty(now)
        except (ValueError, OSError) as exc:
            logger.warning(
                "Local submissions file unreadable, treating as empty",
                extra={"path": str(self.path), "error": str(exc)},
            )
            return _Document.empty(now, corrupt=True)

        if isinstance(raw, list):
            records = raw
            created_at = now
            last_updated = now
        elif isinstance(raw, dict) and isinstance(raw.get("submissions"), list):
            records = raw["submissions"]
            legacy_meta = raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {}
            created_at = (
                _parse_datetime(raw.get("createdAt"))
                or _parse_datetime(legacy_meta.get("createdAt"))
                or now
            )
            last_updated = (
                _parse_datetime(raw.get("lastUpdated"))
                or _parse_datetime(legacy_meta.get("lastUpdated"))
                or created_at
            )
        else:
            logger.warning(
                "Local submissions file has an unknown shape, treating as empty",
                extra={"path": str(self.path)},
            )
            return _Document.empty(now, corrupt=True)

        document = _Document(created_at=created_at, last_updated=last_updated)
        for record in records:
            try:
                document.submissions.append(StoredSubmission.model_validate(record))
            except ValidationError as exc:
                record_id = record.get("id") if isinstance(record, dict) else None
                logger.warning(
                    "Keeping unreadable submission record as-is",
                    extra={"submission_id": record_id, "error": str(exc)},
                )
                document.unparsed.append(record)
        return document

    def _quarantine_corrupt_file(self) -> None:
        stamp = self._clock().strftime("%Y%m%dT%H%M%S%f")
        target = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            os.replace(self.path, target)
        except FileNotFoundError:
            return
        logger.error("Moved corrupt submissions file aside", extra={"path": str(target)})

    def _write(self, document: _Document) -> None:
        if document.corrupt:
            self._quarantine_corrupt_file()
        now = self._clock()
        records = [submission.to_wire() for submission in document.submissions]
        records.extend(document.unparsed)
        payload = {
            "version": FILE_FORMAT_VERSION,
            "createdAt": document.created_at.isoformat(),
            "lastUpdated": now.isoformat(),
            "totalCount": len(records),
            "submissions": records,
        }
        atomic_write_json(self.path, payload)

    def _upsert_sync(self, submission: StoredSubmission) -> None:
        document = self._load()
        idx = document.index_of(submission.id)
        if idx is None:
            document.submissions.insert(0, submission)
        else:
            document.submissions[idx] = submission
        self._write(document)

    def _update_sync(
        self, submission_id: str, mutate: Callable[[StoredSubmission], None]
    ) -> StoredSubmission | None:
        document = self._load()
        idx = document.index_of(submission_id)
        if idx is None:
            return None
        submission = document.submissions[idx].model_copy(deep=True)
        mutate(submission)
        submission.updated_at = self._clock()
        document.submissions[idx] = submission
        self._write(document)
        return submission

    def _delete_sync(self, submission_id: str) -> bool:
        document = self._load()
        idx = document.index_of(submission_id)
        if idx is None:
            return False
        del document.submissions[idx]
        self._write(document)
        return True

    async def _mutate(self, func: Callable[..., Any], *args: Any) -> Any:
        async with self._lock:
            try:
                return await asyncio.to_thread(func, *args)
            except OSError as exc:
                raise PersistentStoreError(f"Local store write failed for {self.path}: {exc}") from exc

    # -- public API --

    async def upsert(self, submission: StoredSubmission) -> None:
        await self._mutate(self._upsert_sync, submission)
        logger.debug("Local store upserted submission", extra={"submission_id": submission.id})

    async def update(
        self, submission_id: str, mutate: Callable[[StoredSubmission], None]
    ) -> StoredSubmission | None:
        """Apply ``mutate`` to a stored submission under the write lock.

        Returns the updated record, or None when the id is unknown.
        """
        return await self._mutate(self._update_sync, submission_id, mutate)

    async def delete(self, submission_id: str) -> bool:
        return await self._mutate(self._delete_sync, submission_id)

    async def read_all(self) -> list[StoredSubmission]:
        document = await asyncio.to_thread(self._load)
        return list(document.submissions)

    async def get(self, submission_id: str) -> StoredSubmission | None:
        for submission in await self.read_all():
            if submission.id == submission_id:
                return submission
        return None

    async def stats(self) -> dict[str, Any]:
        document = await asyncio.to_thread(self._load)
        counts = {status: 0 for status in SubmissionStatus}
        for submission in document.submissions:
            counts[submission.status] += 1
        return {
            "total": len(document.submissions),
            "synced": counts[SubmissionStatus.SYNCED],
            "pending": counts[SubmissionStatus.PENDING],
            "failed": counts[SubmissionStatus.FAILED],
            "last_updated": document.last_updated,
        }

    async def snapshot(self) -> StoreSnapshot:
        """Count and newest record, re-reading the file only when it changed."""
        signature = await asyncio.to_thread(file_signature, self.path)
        if signature is None:
            return StoreSnapshot(count=0, latest=None)
        if self._snapshot_cache and self._snapshot_cache[0] == signature:
            return self._snapshot_cache[1]
        submissions = await self.read_all()
        snapshot = StoreSnapshot(count=len(submissions), latest=submissions[0] if submissions else None)
        self._snapshot_cache = (signature, snapshot)
        return snapshot
