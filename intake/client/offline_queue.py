from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import httpx
from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, create_engine, delete, select
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_SYNCED = "synced"
DRAFT_SLOT = "current_draft"
RETRYABLE_STATUS_CODES = {408, 429}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClientBase(DeclarativeBase):
    pass


class ClientQueueRecord(ClientBase):
    __tablename__ = "client_queue"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    local_id = Column(String(64), nullable=False, unique=True, index=True)
    payload = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, default=STATUS_PENDING, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    submission_id = Column(String(64), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)


class ClientDraft(ClientBase):
    __tablename__ = "client_draft"

    slot = Column(String(32), primary_key=True)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


@dataclass
class QueuedSubmission:
    local_id: str
    payload: dict[str, Any]
    status: str
    created_at: datetime
    submission_id: str | None = None
    attempts: int = 0
    last_error: str | None = None

    @classmethod
    def from_row(cls, row: ClientQueueRecord) -> "QueuedSubmission":
        return cls(
            local_id=row.local_id,
            payload=dict(row.payload or {}),
            status=row.status,
            created_at=row.created_at,
            submission_id=row.submission_id,
            attempts=row.attempts or 0,
            last_error=row.last_error,
        )


@dataclass
class DeliveryOutcome:
    local_id: str
    delivered: bool = False
    queued: bool = False
    rejected: bool = False
    duplicate: bool = False
    submission_id: str | None = None
    status_code: int | None = None
    error: str | None = None
    errors: dict[str, Any] = field(default_factory=dict)


@dataclass
class ResyncReport:
    attempted: int = 0
    delivered: int = 0
    rejected: int = 0
    remaining: int = 0


def _envelope_data(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    if isinstance(body, dict) and "code" in body and "data" in body:
        return body.get("data") or {}
    return body if isinstance(body, dict) else {}


def _envelope_details(response: httpx.Response) -> tuple[str, dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return response.text, {}
    if not isinstance(body, dict):
        return str(body), {}
    return str(body.get("message") or body.get("detail") or ""), body.get("details") or {}


class ClientOfflineQueue:
    """Local-first submission queue for a submitting client.

    Every payload is recorded in a SQLite file before it is sent, so a
    submission survives a dropped connection or a closed process and is
    re-sent once connectivity returns.
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        submit_path: str = "/api/v1/submissions",
        prune_synced: bool = False,
        online: bool = True,
        timeout: float = 15.0,
    ) -> None:
        if client is None and base_url is None:
            raise ValueError("Either base_url or client is required")
        self.db_path = Path(db_path)
        self.submit_path = submit_path
        self.prune_synced = prune_synced
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None
        self._engine = create_engine(
            f"sqlite:///{self.db_path}", connect_args={"check_same_thread": False}
        )
        self._sessions = sessionmaker(self._engine, expire_on_commit=False)
        self._online = online
        self._resync_lock = asyncio.Lock()
        self._schema_lock = asyncio.Lock()
        self._ready = False

    @property
    def online(self) -> bool:
        return self._online

    async def _run(self, func, *args):
        if not self._ready:
            async with self._schema_lock:
                if not self._ready:
                    await asyncio.to_thread(self._create_schema)
        return await asyncio.to_thread(func, *args)

    def _create_schema(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        ClientBase.metadata.create_all(self._engine)
        self._ready = True

    # -- queue records --

    def _insert(self, local_id: str, payload: dict[str, Any]) -> None:
        with self._sessions.begin() as session:
            session.add(ClientQueueRecord(local_id=local_id, payload=payload, status=STATUS_PENDING))

    def _fetch(self, local_id: str) -> QueuedSubmission | None:
        with self._sessions() as session:
            row = self._row(session, local_id)
            return QueuedSubmission.from_row(row) if row else None

    @staticmethod
    def _row(session: Session, local_id: str) -> ClientQueueRecord | None:
        return session.scalars(select(ClientQueueRecord).where(ClientQueueRecord.local_id == local_id)).first()

    def _fetch_unsynced(self) -> list[QueuedSubmission]:
        stmt = select(ClientQueueRecord).where(ClientQueueRecord.status == STATUS_PENDING).order_by(ClientQueueRecord.seq)
        with self._sessions() as session:
            return [QueuedSubmission.from_row(row) for row in session.scalars(stmt)]

    def _set_synced(self, local_id: str, submission_id: str | None) -> bool:
        with self._sessions.begin() as session:
            row = self._row(session, local_id)
            if row is None:
                return False
            if self.prune_synced:
                session.delete(row)
            else:
                row.status = STATUS_SYNCED
                row.submission_id = submission_id
                row.last_error = None
            return True

    def _set_failure(self, local_id: str, error: str) -> None:
        with self._sessions.begin() as session:
            row = self._row(session, local_id)
            if row is not None:
                row.attempts = (row.attempts or 0) + 1
                row.last_error = error

    def _remove(self, local_id: str) -> bool:
        with self._sessions.begin() as session:
            result = session.execute(delete(ClientQueueRecord).where(ClientQueueRecord.local_id == local_id))
            return bool(result.rowcount)

    async def enqueue(self, payload: Mapping[str, Any]) -> str:
        local_id = str(uuid.uuid4())
        await self._run(self._insert, local_id, dict(payload))
        logger.debug("Queued submission locally", extra={"local_id": local_id})
        return local_id

    async def get(self, local_id: str) -> QueuedSubmission | None:
        return await self._run(self._fetch, local_id)

    async def list_unsynced(self) -> list[QueuedSubmission]:
        return await self._run(self._fetch_unsynced)

    async def mark_synced(self, local_id: str, submission_id: str | None = None) -> bool:
        return await self._run(self._set_synced, local_id, submission_id)

    async def remove(self, local_id: str) -> bool:
        return await self._run(self._remove, local_id)

    # -- draft slot --

    def _write_draft(self, payload: dict[str, Any]) -> None:
        with self._sessions.begin() as session:
            draft = session.get(ClientDraft, DRAFT_SLOT)
            if draft is None:
                session.add(ClientDraft(slot=DRAFT_SLOT, payload=payload))
            else:
                draft.payload = payload

    def _read_draft(self) -> dict[str, Any] | None:
        with self._sessions() as session:
            draft = session.get(ClientDraft, DRAFT_SLOT)
            return dict(draft.payload) if draft else None

    def _drop_draft(self) -> None:
        with self._sessions.begin() as session:
            session.execute(delete(ClientDraft).where(ClientDraft.slot == DRAFT_SLOT))

    async def save_draft(self, payload: Mapping[str, Any]) -> None:
        await self._run(self._write_draft, dict(payload))

    async def load_draft(self) -> dict[str, Any] | None:
        return await self._run(self._read_draft)

    async def clear_draft(self) -> None:
        await self._run(self._drop_draft)

    # -- delivery --

    async def _deliver(self, local_id: str, payload: dict[str, Any]) -> DeliveryOutcome:
        try:
            response = await self._client.post(self.submit_path, json=payload)
        except httpx.HTTPError as exc:
            error = f"{type(exc).__name__}: {exc}"
            await self._run(self._set_failure, local_id, error)
            logger.info("Delivery failed, submission stays queued", extra={"local_id": local_id, "error": error})
            return DeliveryOutcome(local_id=local_id, queued=True, error=error)

        status = response.status_code
        if response.is_success:
            data = _envelope_data(response)
            submission_id = data.get("submissionId")
            await self.mark_synced(local_id, submission_id)
            return DeliveryOutcome(
                local_id=local_id,
                delivered=True,
                duplicate=bool(data.get("duplicate")),
                submission_id=submission_id,
                status_code=status,
            )

        message, details = _envelope_details(response)
        if status >= 500 or status in RETRYABLE_STATUS_CODES:
            error = f"HTTP {status}: {message}"
            await self._run(self._set_failure, local_id, error)
            return DeliveryOutcome(local_id=local_id, queued=True, status_code=status, error=error)

        await self.remove(local_id)
        logger.warning("Server rejected queued submission", extra={"local_id": local_id, "status_code": status})
        return DeliveryOutcome(
            local_id=local_id,
            rejected=True,
            status_code=status,
            error=message,
            errors=details,
        )

    async def submit(self, payload: Mapping[str, Any]) -> DeliveryOutcome:
        """Record ``payload`` locally, then try to deliver it."""
        local_id = await self.enqueue(payload)
        if not self._online:
            return DeliveryOutcome(local_id=local_id, queued=True, error="offline")
        outcome = await self._deliver(local_id, dict(payload))
        if outcome.delivered:
            await self.clear_draft()
        return outcome

    async def resync(self) -> ResyncReport:
        """Re-send pending records in creation order. Concurrent calls run one at a time."""
        async with self._resync_lock:
            report = ResyncReport()
            for record in await self.list_unsynced():
                report.attempted += 1
                outcome = await self._deliver(record.local_id, record.payload)
                if outcome.delivered:
                    report.delivered += 1
                elif outcome.rejected:
                    report.rejected += 1
                elif outcome.status_code is None:
                    # Transport failure: the rest would fail the same way.
                    break
            report.remaining = len(await self.list_unsynced())
            logger.info(
                "Client resync finished",
                extra={"attempted": report.attempted, "delivered": report.delivered, "remaining": report.remaining},
            )
            return report

    async def on_connectivity_change(self, online: bool) -> ResyncReport | None:
        was_online = self._online
        self._online = online
        if online and not was_online:
            return await self.resync()
        return None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
        await asyncio.to_thread(self._engine.dispose)
