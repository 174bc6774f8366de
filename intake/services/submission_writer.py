from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from intake.core.exceptions import PersistentStoreError, TransientStoreError
from intake.schemas.submission import PersistedTo, StoredSubmission, SubmissionStatus
from intake.services.duplicate_guard import DuplicateGuard, FingerprintEntry, fingerprint
from intake.services.local_store import DurableLocalStore
from intake.services.notifications import NotificationSender
from intake.services.remote_store import RemoteStoreClient, with_timeout
from intake.services.reports import SubmissionReportWriter
from intake.services.sync_queue import SyncQueue, mark_synced

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_submission_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class RequestMetadata:
    ip: str | None = None
    user_agent: str | None = None


@dataclass
class IntakeResult:
    submission_id: str
    persisted: bool
    duplicate: bool
    persisted_to: PersistedTo = field(default_factory=PersistedTo)

    @property
    def message(self) -> str:
        if self.duplicate:
            return "Submission already received"
        if self.persisted_to.remote:
            return "Submission received"
        return "Submission received and queued for synchronization"


@dataclass
class DeleteResult:
    submission_id: str
    local: bool
    remote: bool
    dequeued: bool

    @property
    def found(self) -> bool:
        return self.local or self.remote


class SubmissionWriter:
    """Single entry point turning a validated payload into a persisted submission."""

    def __init__(
        self,
        local_store: DurableLocalStore,
        remote: RemoteStoreClient,
        queue: SyncQueue,
        guard: DuplicateGuard,
        *,
        notifier: NotificationSender | None = None,
        reports: SubmissionReportWriter | None = None,
        remote_timeout: float | None = 10.0,
        id_factory: Callable[[], str] = _new_submission_id,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._local = local_store
        self._remote = remote
        self._queue = queue
        self._guard = guard
        self._notifier = notifier
        self._reports = reports
        self.remote_timeout = remote_timeout
        self._id_factory = id_factory
        self._clock = clock or _utcnow
        self._background: set[asyncio.Task[None]] = set()

    async def submit(self, payload: Mapping[str, Any], metadata: RequestMetadata | None = None) -> IntakeResult:
        metadata = metadata or RequestMetadata()
        key = fingerprint(payload)
        entry, created = self._guard.claim(key, self._id_factory)
        if not created:
            return await self._duplicate(entry, payload, metadata)

        entry.outcome = asyncio.get_running_loop().create_future()
        persisted_to: PersistedTo | None = None
        try:
            result = await self._write_new(entry.submission_id, payload, metadata)
            persisted_to = result.persisted_to
            return result
        finally:
            if persisted_to is None:
                self._guard.release(key, entry.submission_id)
            entry.outcome.set_result(persisted_to)

    async def _duplicate(
        self, entry: FingerprintEntry, payload: Mapping[str, Any], metadata: RequestMetadata
    ) -> IntakeResult:
        first: PersistedTo | None = PersistedTo(local=True)
        if entry.outcome is not None:
            first = await asyncio.shield(entry.outcome)
        if first is None:
            # The first attempt stored nothing, so this one takes its place.
            logger.info("Earlier identical submission failed, retrying", extra={"submission_id": entry.submission_id})
            return await self.submit(payload, metadata)

        existing = await self._local.get(entry.submission_id)
        persisted_to = PersistedTo(
            local=first.local and existing is not None,
            remote=first.remote or bool(existing and existing.synced_to_remote),
        )
        logger.info("Duplicate submission ignored", extra={"submission_id": entry.submission_id})
        return IntakeResult(
            submission_id=entry.submission_id,
            persisted=persisted_to.local or persisted_to.remote,
            duplicate=True,
            persisted_to=persisted_to,
        )

    async def _write_new(
        self, submission_id: str, payload: Mapping[str, Any], metadata: RequestMetadata
    ) -> IntakeResult:
        now = self._clock()
        submission = StoredSubmission(
            id=submission_id,
            timestamp=now,
            updated_at=now,
            data=dict(payload),
            status=SubmissionStatus.PENDING,
            ip=metadata.ip,
            user_agent=metadata.user_agent,
        )

        local_error: PersistentStoreError | None = None
        try:
            await self._local.upsert(submission)
        except PersistentStoreError as exc:
            local_error = exc
            logger.error("Local write failed", extra={"submission_id": submission.id, "error": str(exc)})

        remote_error: str | None = None
        try:
            await with_timeout(self._remote.write(submission), self.remote_timeout)
        except TransientStoreError as exc:
            remote_error = str(exc)
            logger.warning("Remote write failed", extra={"submission_id": submission.id, "error": remote_error})

        stored_locally = local_error is None
        stored_remotely = remote_error is None
        if not stored_locally and not stored_remotely:
            raise PersistentStoreError(
                f"Submission {submission.id} could not be stored locally or remotely"
            ) from local_error

        if stored_remotely:
            mark_synced(submission)
            if stored_locally:
                try:
                    await self._local.update(submission.id, mark_synced)
                except PersistentStoreError:
                    logger.exception("Could not record remote sync locally", extra={"submission_id": submission.id})
        else:
            submission.last_error = remote_error
            try:
                await self._queue.enqueue(submission.id, remote_error)
            except PersistentStoreError:
                # The record is pending on disk, so the next queue load picks it up.
                logger.exception("Could not persist sync queue", extra={"submission_id": submission.id})

        if self._reports is not None:
            await self._reports.write(submission)
        self._dispatch_notification(submission)

        logger.info(
            "Submission persisted",
            extra={"submission_id": submission.id, "local": stored_locally, "remote": stored_remotely},
        )
        return IntakeResult(
            submission_id=submission.id,
            persisted=True,
            duplicate=False,
            persisted_to=PersistedTo(local=stored_locally, remote=stored_remotely),
        )

    async def delete(self, submission_id: str) -> DeleteResult:
        """Administrative delete from both stores and the retry queue.

        Runs under the sync queue's per-submission lock, so a drain already
        writing this record finishes before anything is removed.
        """
        async with self._queue.exclusive(submission_id):
            local_deleted = await self._local.delete(submission_id)
            dequeued = await self._queue.remove(submission_id)
            try:
                remote_deleted = await with_timeout(self._remote.delete(submission_id), self.remote_timeout)
            except TransientStoreError as exc:
                logger.warning("Remote delete failed", extra={"submission_id": submission_id, "error": str(exc)})
                remote_deleted = False
            if self._reports is not None:
                await self._reports.remove(submission_id)
        return DeleteResult(
            submission_id=submission_id,
            local=local_deleted,
            remote=remote_deleted,
            dequeued=dequeued,
        )

    def _dispatch_notification(self, submission: StoredSubmission) -> None:
        if self._notifier is None:
            return
        task = asyncio.create_task(self._notify(submission), name=f"notify-{submission.id}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _notify(self, submission: StoredSubmission) -> None:
        try:
            await self._notifier.send(submission)
        except Exception:
            logger.exception("Notification delivery failed", extra={"submission_id": submission.id})

    @property
    def pending_notifications(self) -> int:
        return len(self._background)

    async def wait_for_notifications(self, timeout: float | None = None) -> None:
        if not self._background:
            return
        await asyncio.wait(set(self._background), timeout=timeout)

    async def aclose(self, timeout: float | None = 5.0) -> None:
        await self.wait_for_notifications(timeout)
        for task in list(self._background):
            task.cancel()
