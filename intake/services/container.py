from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from intake.core.settings import Settings
from intake.db.session import build_engine, build_session_factory
from intake.schemas.submission import StoredSubmission
from intake.services.duplicate_guard import DuplicateGuard
from intake.services.local_store import DurableLocalStore
from intake.services.notifications import (
    LoggingNotificationSender,
    NotificationSender,
    WebhookNotificationSender,
)
from intake.services.realtime import RealtimeBroadcaster
from intake.services.remote_store import DisabledRemoteStore, RemoteStoreClient, SqlRemoteStore
from intake.services.reports import SubmissionReportWriter
from intake.services.submission_writer import SubmissionWriter
from intake.services.sync_queue import SyncQueue, SyncScheduler

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Owns every long-lived service of one process. Lives on ``app.state``."""

    settings: Settings
    local_store: DurableLocalStore
    remote: RemoteStoreClient
    queue: SyncQueue
    guard: DuplicateGuard
    writer: SubmissionWriter
    broadcaster: RealtimeBroadcaster
    scheduler: SyncScheduler
    notifier: NotificationSender
    reports: SubmissionReportWriter | None = None
    engine: AsyncEngine | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        remote: RemoteStoreClient | None = None,
        notifier: NotificationSender | None = None,
    ) -> "ServiceContainer":
        engine: AsyncEngine | None = None
        if remote is None:
            if settings.remote_store_enabled:
                engine = build_engine(settings.database_url)
                remote = SqlRemoteStore(build_session_factory(engine))
            else:
                remote = DisabledRemoteStore()

        if notifier is None:
            if settings.notification_webhook_url:
                notifier = WebhookNotificationSender(
                    settings.notification_webhook_url,
                    app_url=settings.public_app_url,
                    timeout=settings.notification_timeout_seconds,
                )
            else:
                notifier = LoggingNotificationSender()

        reports = SubmissionReportWriter(settings.reports_dir) if settings.reports_enabled else None
        local_store = DurableLocalStore(settings.submissions_file)

        async def refresh_report(submission: StoredSubmission) -> None:
            if reports is not None:
                await reports.write(submission)

        queue = SyncQueue(
            settings.sync_queue_file,
            local_store,
            remote,
            initial_delay=settings.sync_initial_delay_seconds,
            base_delay=settings.sync_base_delay_seconds,
            max_delay=settings.sync_max_delay_seconds,
            max_attempts=settings.sync_max_attempts,
            max_workers=settings.sync_max_workers,
            remote_timeout=settings.remote_timeout_seconds,
            on_status_change=refresh_report,
        )
        guard = DuplicateGuard(window_seconds=settings.duplicate_window_seconds)
        writer = SubmissionWriter(
            local_store,
            remote,
            queue,
            guard,
            notifier=notifier,
            reports=reports,
            remote_timeout=settings.remote_timeout_seconds,
        )
        broadcaster = RealtimeBroadcaster(
            local_store,
            poll_interval=settings.realtime_poll_interval_seconds,
            heartbeat_interval=settings.realtime_heartbeat_seconds,
            buffer_size=settings.realtime_session_buffer,
        )
        return cls(
            settings=settings,
            local_store=local_store,
            remote=remote,
            queue=queue,
            guard=guard,
            writer=writer,
            broadcaster=broadcaster,
            scheduler=SyncScheduler(queue, settings.sync_interval_seconds),
            notifier=notifier,
            reports=reports,
            engine=engine,
        )

    async def start(self) -> None:
        self.settings.data_dir.mkdir(parents=True, exist_ok=True)
        await self.queue.load()
        if self.settings.sync_scheduler_enabled:
            self.scheduler.start()
        logger.info(
            "Services started",
            extra={
                "data_dir": str(self.settings.data_dir),
                "remote_store": type(self.remote).__name__,
                "queue_length": len(self.queue),
            },
        )

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.broadcaster.shutdown()
        await self.writer.aclose()
        if isinstance(self.notifier, WebhookNotificationSender):
            await self.notifier.aclose()
        if self.engine is not None:
            await self.engine.dispose()
        logger.info("Services stopped")
