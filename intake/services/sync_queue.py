from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable

from pydantic import ValidationError

from intake.core.exceptions import PersistentStoreError, SyncExhausted, TransientStoreError
from intake.schemas.submission import StoredSubmission, SubmissionStatus, SyncQueueFile, SyncQueueItem
from intake.services.atomic_files import atomic_write_json, read_json
from intake.services.local_store import DurableLocalStore
from intake.services.remote_store import RemoteStoreClient, with_timeout

logger = logging.getLogger(__name__)

StatusListener = Callable[[StoredSubmission], Awaitable[Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def mark_synced(record: StoredSubmission) -> None:
    record.status = SubmissionStatus.SYNCED
    record.synced_to_remote = True
    record.last_error = None


@dataclass
class DrainReport:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    exhausted: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class SyncQueue:
    """Submissions waiting for the remote store, with their retry schedule.

    The queue is mirrored to ``path`` after every change and rehydrated by
    :meth:`load`, so scheduled retries survive a restart.
    """

    def __init__(
        self,
        path: Path,
        local_store: DurableLocalStore,
        remote: RemoteStoreClient,
        *,
        initial_delay: float = 60.0,
        base_delay: float = 60.0,
        max_delay: float = 3600.0,
        max_attempts: int = 10,
        max_workers: int = 4,
        remote_timeout: float | None = 10.0,
        clock: Callable[[], datetime] | None = None,
        on_status_change: StatusListener | None = None,
    ) -> None:
        self.path = Path(path)
        self._local = local_store
        self._remote = remote
        self.initial_delay = initial_delay
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.remote_timeout = remote_timeout
        self._clock = clock or _utcnow
        self._on_status_change = on_status_change
        self._items: dict[str, SyncQueueItem] = {}
        self._last_processed: datetime | None = None
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._semaphore = asyncio.Semaphore(max(1, max_workers))
        self._persist_lock = asyncio.Lock()

    def __contains__(self, submission_id: object) -> bool:
        return submission_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    @property
    def last_processed(self) -> datetime | None:
        return self._last_processed

    def items(self) -> list[SyncQueueItem]:
        return [item.model_copy() for item in self._items.values()]

    def get(self, submission_id: str) -> SyncQueueItem | None:
        item = self._items.get(submission_id)
        return item.model_copy() if item else None

    def delay_for(self, attempts: int) -> float:
        return min(self.max_delay, self.base_delay * (2**attempts))

    async def _persist(self) -> None:
        async with self._persist_lock:
            document = SyncQueueFile(queue=list(self._items.values()), last_processed=self._last_processed)
            try:
                await asyncio.to_thread(atomic_write_json, self.path, document.to_wire())
            except OSError as exc:
                raise PersistentStoreError(f"Sync queue write failed for {self.path}: {exc}") from exc

    async def load(self) -> int:
        """Rehydrate from disk, then re-queue any pending submission the file missed."""
        raw: Any = None
        try:
            raw = await asyncio.to_thread(read_json, self.path)
        except FileNotFoundError:
            pass
        except (ValueError, OSError) as exc:
            logger.warning("Sync queue file unreadable, starting empty", extra={"path": str(self.path), "error": str(exc)})

        if isinstance(raw, list):
            raw = {"queue": raw}
        self._items.clear()
        if raw is not None:
            try:
                document = SyncQueueFile.model_validate(raw)
            except ValidationError as exc:
                logger.warning("Sync queue file invalid, starting empty", extra={"path": str(self.path), "error": str(exc)})
            else:
                self._last_processed = document.last_processed
                for item in document.queue:
                    self._items.setdefault(item.submission_id, item)

        now = self._clock()
        recovered = 0
        for submission in await self._local.read_all():
            if submission.status is SubmissionStatus.PENDING and submission.id not in self._items:
                self._items[submission.id] = SyncQueueItem(
                    submission_id=submission.id,
                    attempts=submission.retry_count,
                    next_retry=now,
                    error=submission.last_error,
                )
                recovered += 1
        if recovered:
            logger.info("Re-queued pending submissions", extra={"count": recovered})
            await self._persist()
        logger.info("Sync queue loaded", extra={"queue_length": len(self._items)})
        return len(self._items)

    async def enqueue(self, submission_id: str, error: str | None = None) -> bool:
        """Schedule a retry for ``submission_id``. Returns False when already queued."""
        if submission_id in self._items:
            return False
        self._items[submission_id] = SyncQueueItem(
            submission_id=submission_id,
            attempts=0,
            next_retry=self._clock() + timedelta(seconds=self.initial_delay),
            error=error,
        )
        await self._persist()
        logger.info("Submission queued for sync", extra={"submission_id": submission_id})
        return True

    async def remove(self, submission_id: str) -> bool:
        if self._items.pop(submission_id, None) is None:
            return False
        await self._persist()
        return True

    def _drop(self, submission_id: str) -> None:
        self._items.pop(submission_id, None)

    async def _notify(self, submission: StoredSubmission | None) -> None:
        if submission is not None and self._on_status_change is not None:
            await self._on_status_change(submission)

    async def _record_failure(self, item: SyncQueueItem, error: str, report: DrainReport) -> None:
        now = self._clock()
        item.attempts += 1
        item.last_attempt = now
        item.error = error

        if item.attempts >= self.max_attempts:
            exhausted = SyncExhausted(item.submission_id, item.attempts, error)

            def mark_failed(record: StoredSubmission) -> None:
                record.status = SubmissionStatus.FAILED
                record.retry_count = exhausted.attempts
                record.last_error = error

            self._drop(item.submission_id)
            report.exhausted += 1
            logger.error(str(exhausted), extra={"submission_id": item.submission_id, "attempts": item.attempts})
            await self._notify(await self._local.update(item.submission_id, mark_failed))
            return

        item.next_retry = now + timedelta(seconds=self.delay_for(item.attempts))
        report.failed += 1
        logger.warning(
            "Sync attempt failed",
            extra={
                "submission_id": item.submission_id,
                "attempts": item.attempts,
                "next_retry": item.next_retry.isoformat(),
                "error": error,
            },
        )

        def note_attempt(record: StoredSubmission) -> None:
            record.retry_count = item.attempts
            record.last_error = error

        await self._local.update(item.submission_id, note_attempt)

    def _checkout_lock(self, submission_id: str) -> asyncio.Lock:
        lock = self._locks.get(submission_id)
        if lock is None:
            lock = self._locks[submission_id] = asyncio.Lock()
        self._lock_users[submission_id] = self._lock_users.get(submission_id, 0) + 1
        return lock

    def _return_lock(self, submission_id: str) -> None:
        users = self._lock_users.get(submission_id, 1) - 1
        if users > 0:
            self._lock_users[submission_id] = users
            return
        self._lock_users.pop(submission_id, None)
        self._locks.pop(submission_id, None)

    @asynccontextmanager
    async def exclusive(self, submission_id: str) -> AsyncIterator[None]:
        """Hold ``submission_id`` away from drains, waiting out an attempt in flight."""
        lock = self._checkout_lock(submission_id)
        try:
            async with lock:
                yield
        finally:
            self._return_lock(submission_id)

    async def _process(self, submission_id: str, report: DrainReport) -> None:
        lock = self._checkout_lock(submission_id)
        try:
            if lock.locked():
                report.skipped += 1
                return
            async with lock, self._semaphore:
                item = self._items.get(submission_id)
                if item is None:
                    report.skipped += 1
                    return
                report.processed += 1

                submission = await self._local.get(submission_id)
                if submission is None:
                    logger.warning("Dropping sync item for unknown submission", extra={"submission_id": submission_id})
                    self._drop(submission_id)
                    return
                if submission.status is SubmissionStatus.SYNCED:
                    self._drop(submission_id)
                    report.succeeded += 1
                    return

                try:
                    await with_timeout(self._remote.write(submission), self.remote_timeout)
                except TransientStoreError as exc:
                    await self._record_failure(item, str(exc), report)
                    return

                try:
                    updated = await self._local.update(submission_id, mark_synced)
                except PersistentStoreError:
                    # Remote writes are upserts; the next drain repeats both steps.
                    logger.exception("Synced remotely but local update failed", extra={"submission_id": submission_id})
                    report.failed += 1
                    return
                self._drop(submission_id)
                report.succeeded += 1
                logger.info("Submission synced", extra={"submission_id": submission_id})
                await self._notify(updated)
        finally:
            self._return_lock(submission_id)

    async def drain(self, force: bool = False) -> DrainReport:
        """Attempt every due item (every item when ``force``)."""
        now = self._clock()
        due = [item.submission_id for item in self._items.values() if force or item.next_retry <= now]
        report = DrainReport()
        if not due:
            return report

        await asyncio.gather(*(self._process(submission_id, report) for submission_id in due))
        self._last_processed = self._clock()
        await self._persist()
        logger.info("Sync queue drained", extra={**report.as_dict(), "remaining": len(self._items)})
        return report


class SyncScheduler:
    """Background task that drains the queue on a fixed interval."""

    def __init__(self, queue: SyncQueue, interval: float) -> None:
        self.queue = queue
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="sync-scheduler")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.queue.drain()
            except PersistentStoreError:
                logger.exception("Scheduled sync drain failed")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
