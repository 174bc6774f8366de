from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable

from intake.schemas.submission import StoredSubmission
from intake.services.local_store import DurableLocalStore, StoreSnapshot

logger = logging.getLogger(__name__)

EVENT_CONNECTED = "connected"
EVENT_NEW_SUBMISSION = "new_submission"
EVENT_COUNT_UPDATE = "count_update"
EVENT_HEARTBEAT = "heartbeat"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class ConnectionSession:
    connection_id: str
    opened_at: datetime
    queue: asyncio.Queue
    subscriber: str | None = None
    last_heartbeat_at: datetime | None = None
    state: SessionState = SessionState.CONNECTING
    delivered: int = field(default=0)


def format_sse(event: dict[str, Any]) -> str:
    return f"event: {event['type']}\ndata: {json.dumps(event, ensure_ascii=False, default=str)}\n\n"


def submission_summary(submission: StoredSubmission) -> dict[str, Any]:
    data = submission.data
    return {
        "id": submission.id,
        "timestamp": submission.timestamp.isoformat(),
        "status": submission.status.value,
        "fullName": data.get("fullName"),
        "wilaya": data.get("wilaya"),
        "financingType": data.get("financingType"),
        "requestedAmount": data.get("requestedAmount"),
    }


class RealtimeBroadcaster:
    """Fan-out of store change events to open dashboard sessions.

    A single poller compares store snapshots while at least one session is
    open. Events are not replayed; a reconnecting dashboard refetches the list.
    """

    def __init__(
        self,
        local_store: DurableLocalStore,
        *,
        poll_interval: float = 5.0,
        heartbeat_interval: float = 30.0,
        buffer_size: int = 100,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._local = local_store
        self.poll_interval = poll_interval
        self.heartbeat_interval = heartbeat_interval
        self.buffer_size = buffer_size
        self._clock = clock or _utcnow
        self._sessions: dict[str, ConnectionSession] = {}
        self._baseline: StoreSnapshot | None = None
        self._poller: asyncio.Task[None] | None = None

    @property
    def active_connections(self) -> int:
        return len(self._sessions)

    def sessions(self) -> list[ConnectionSession]:
        return list(self._sessions.values())

    def _event(self, event_type: str, **fields: Any) -> dict[str, Any]:
        return {"type": event_type, "timestamp": self._clock().isoformat(), **fields}

    def _offer(self, session: ConnectionSession, event: dict[str, Any]) -> bool:
        try:
            session.queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def open(self, subscriber: str | None = None) -> ConnectionSession:
        session = ConnectionSession(
            connection_id=str(uuid.uuid4()),
            opened_at=self._clock(),
            queue=asyncio.Queue(maxsize=self.buffer_size),
            subscriber=subscriber,
        )
        self._sessions[session.connection_id] = session
        session.state = SessionState.OPEN
        self._offer(
            session,
            self._event(
                EVENT_CONNECTED,
                connectionId=session.connection_id,
                activeConnections=self.active_connections,
            ),
        )
        logger.info(
            "Realtime session opened",
            extra={"connection_id": session.connection_id, "active_connections": self.active_connections},
        )
        self._ensure_poller()
        return session

    def close(self, connection_id: str) -> bool:
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return False
        session.state = SessionState.CLOSED
        logger.info(
            "Realtime session closed",
            extra={"connection_id": connection_id, "active_connections": self.active_connections},
        )
        return True

    def broadcast(self, event: dict[str, Any]) -> int:
        delivered = 0
        for session in list(self._sessions.values()):
            if self._offer(session, event):
                delivered += 1
            else:
                logger.warning("Pruning stalled realtime session", extra={"connection_id": session.connection_id})
                self.close(session.connection_id)
        return delivered

    def publish_submission(self, submission: StoredSubmission | dict[str, Any]) -> int:
        summary = submission_summary(submission) if isinstance(submission, StoredSubmission) else dict(submission)
        return self.broadcast(self._event(EVENT_NEW_SUBMISSION, submission=summary))

    async def stream(self, session: ConnectionSession) -> AsyncIterator[str]:
        """Yield SSE frames for ``session`` until it is closed or the client goes away."""
        loop = asyncio.get_running_loop()
        next_heartbeat = loop.time() + self.heartbeat_interval
        try:
            while session.state is SessionState.OPEN:
                remaining = next_heartbeat - loop.time()
                if remaining <= 0:
                    # Heartbeats keep their cadence even while events are flowing.
                    next_heartbeat = loop.time() + self.heartbeat_interval
                    session.last_heartbeat_at = self._clock()
                    event = self._event(EVENT_HEARTBEAT, connectionId=session.connection_id)
                else:
                    try:
                        event = await asyncio.wait_for(session.queue.get(), timeout=remaining)
                    except asyncio.TimeoutError:
                        continue
                session.delivered += 1
                yield format_sse(event)
        finally:
            self.close(session.connection_id)

    async def prime(self) -> StoreSnapshot:
        self._baseline = await self._local.snapshot()
        return self._baseline

    async def poll_once(self) -> list[dict[str, Any]]:
        """Compare the store with the last snapshot and broadcast what changed."""
        if self._baseline is None:
            await self.prime()
            return []
        previous = self._baseline
        current = await self._local.snapshot()
        self._baseline = current

        events: list[dict[str, Any]] = []
        grew = current.count >= previous.count
        if grew and current.latest is not None and current.latest_id != previous.latest_id:
            events.append(self._event(EVENT_NEW_SUBMISSION, submission=submission_summary(current.latest)))
        if current.count != previous.count:
            events.append(self._event(EVENT_COUNT_UPDATE, count=current.count, previousCount=previous.count))
        for event in events:
            self.broadcast(event)
        return events

    def _ensure_poller(self) -> None:
        if self._poller is None or self._poller.done():
            self._poller = asyncio.create_task(self._poll_loop(), name="realtime-poller")

    async def _poll_loop(self) -> None:
        try:
            if self._baseline is None:
                await self.prime()
            while self._sessions:
                await asyncio.sleep(self.poll_interval)
                try:
                    await self.poll_once()
                except Exception:
                    logger.exception("Realtime poll failed")
        finally:
            self._baseline = None

    async def shutdown(self) -> None:
        for connection_id in list(self._sessions):
            self.close(connection_id)
        if self._poller is not None:
            self._poller.cancel()
            with suppress(asyncio.CancelledError):
                await self._poller
            self._poller = None
