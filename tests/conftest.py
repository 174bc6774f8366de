"""Global test fixtures and shared test infrastructure.

Provides:
- Environment variable defaults (must be set before any intake import)
- FakeRemoteStore implementing the remote store interface in memory
- RecordingNotifier capturing dispatched notifications
- MutableClock for deterministic queue schedules
- Payload / submission factories and admin token helpers
- Service fixtures wired to a per-test data directory
"""

from __future__ import annotations

import os
import tempfile

# Environment defaults: settings are read when intake modules are imported.
os.environ.setdefault("SECRET_KEY", "test-secret-key-boot")
os.environ.setdefault("INTERNAL_API_TOKEN", "internal-test-token")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="intake-tests-"))
os.environ.setdefault("SYNC_SCHEDULER_ENABLED", "false")
os.environ.setdefault("INTAKE_RATE_LIMIT", "1000/minute")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "10000")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import copy
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from intake.core.exceptions import TransientStoreError
from intake.core.settings import settings
from intake.main import create_app
from intake.schemas.submission import StoredSubmission, SubmissionStatus
from intake.services.container import ServiceContainer
from intake.services.duplicate_guard import DuplicateGuard
from intake.services.local_store import DurableLocalStore
from intake.services.sync_queue import SyncQueue
from intake.services.submission_writer import SubmissionWriter


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeRemoteStore:
    """In-memory remote store. Flip ``available`` to simulate an outage."""

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.records: dict[str, StoredSubmission] = {}
        self.write_calls: list[str] = []

    def _check(self) -> None:
        if not self.available:
            raise TransientStoreError("remote store unreachable")

    async def write(self, submission: StoredSubmission) -> None:
        self.write_calls.append(submission.id)
        self._check()
        stored = submission.model_copy(deep=True)
        stored.status = SubmissionStatus.SYNCED
        stored.synced_to_remote = True
        self.records[submission.id] = stored

    async def delete(self, submission_id: str) -> bool:
        self._check()
        return self.records.pop(submission_id, None) is not None

    async def list_recent(self, limit: int = 500) -> list[StoredSubmission]:
        self._check()
        ordered = sorted(self.records.values(), key=lambda item: item.timestamp, reverse=True)
        return [copy.deepcopy(item) for item in ordered[:limit]]

    async def ping(self) -> None:
        self._check()


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[str] = []

    async def send(self, submission: StoredSubmission) -> None:
        if self.fail:
            raise RuntimeError("webhook down")
        self.sent.append(submission.id)


class MutableClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class MonotonicClock:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "fullName": "Amina Benali",
        "phone": "0551234567",
        "email": "amina@example.com",
        "wilaya": "Alger",
        "profession": "Enseignante",
        "monthlyIncomeRange": "80000-120000",
        "salaryReceiveMethod": "CCP",
        "financingType": "Véhicule",
        "requestedAmount": 10_000_000,
        "isExistingCustomer": "نعم",
        "preferredContactTime": "Matin",
        "notes": "Merci",
    }
    payload.update(overrides)
    return payload


def make_submission(**overrides: Any) -> StoredSubmission:
    defaults: dict[str, Any] = dict(
        id=str(uuid.uuid4()),
        timestamp=datetime.now(timezone.utc),
        data=make_payload(),
        status=SubmissionStatus.PENDING,
    )
    defaults.update(overrides)
    return StoredSubmission(**defaults)


def make_token(role: str = "admin", subject: str = "ops@example.com") -> str:
    return jwt.encode({"sub": subject, "role": role}, settings.secret_key, algorithm=settings.jwt_algorithm)


def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token()}"}


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def local_store(tmp_path) -> DurableLocalStore:
    return DurableLocalStore(tmp_path / "submissions.json")


@pytest.fixture
def queue(tmp_path, local_store, remote, clock) -> SyncQueue:
    return SyncQueue(
        tmp_path / "sync-queue.json",
        local_store,
        remote,
        initial_delay=60,
        base_delay=60,
        max_delay=3600,
        max_attempts=10,
        clock=clock,
    )


@pytest.fixture
def guard_clock() -> MonotonicClock:
    return MonotonicClock()


@pytest.fixture
def guard(guard_clock) -> DuplicateGuard:
    return DuplicateGuard(window_seconds=60, clock=guard_clock)


@pytest.fixture
def writer(local_store, remote, queue, guard, notifier) -> SubmissionWriter:
    return SubmissionWriter(local_store, remote, queue, guard, notifier=notifier, remote_timeout=2)


@pytest.fixture
def test_settings(tmp_path):
    return settings.model_copy(update={"data_dir": tmp_path, "sync_scheduler_enabled": False})


@pytest.fixture
def container(test_settings, remote, notifier) -> ServiceContainer:
    return ServiceContainer.from_settings(test_settings, remote=remote, notifier=notifier)


@pytest.fixture
def api_client(container):
    app = create_app(container)
    with TestClient(app) as client:
        yield client
