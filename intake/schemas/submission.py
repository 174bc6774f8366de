from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from intake.core.settings import settings

FILE_FORMAT_VERSION = "2.0.0"

_PHONE_RE = re.compile(r"^0[567][0-9]{8}$")


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class LoanApplicationIn(CamelModel):
    """Public form payload. Normalized output keeps the form's camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    full_name: str = Field(min_length=3, max_length=200)
    phone: str
    email: EmailStr | None = None
    wilaya: str = Field(min_length=1)
    profession: str | None = None
    custom_profession: str | None = None
    monthly_income_range: str | None = None
    salary_receive_method: str = Field(min_length=1)
    financing_type: str = Field(min_length=1)
    requested_amount: int
    is_existing_customer: str | None = None
    preferred_contact_time: str | None = None
    notes: str | None = Field(default=None, max_length=5000)

    @field_validator("email", mode="before")
    @classmethod
    def _blank_email_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("phone")
    @classmethod
    def _check_phone(cls, value: str) -> str:
        compact = re.sub(r"\s", "", value)
        if not _PHONE_RE.match(compact):
            raise ValueError("Phone number must be a mobile number like 05XXXXXXXX")
        return compact

    @field_validator("requested_amount")
    @classmethod
    def _check_amount(cls, value: int) -> int:
        if value < settings.min_loan_amount:
            raise ValueError(f"Requested amount must be at least {settings.min_loan_amount}")
        if value > settings.max_loan_amount:
            raise ValueError(f"Requested amount must not exceed {settings.max_loan_amount}")
        return value


class StoredSubmission(CamelModel):
    """One submission as kept in the local JSON file."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str
    timestamp: datetime
    data: dict[str, Any]
    status: SubmissionStatus = SubmissionStatus.PENDING
    retry_count: int = 0
    synced_to_remote: bool = False
    last_error: str | None = None
    updated_at: datetime | None = None
    ip: str | None = None
    user_agent: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _lift_legacy_fields(cls, value: Any) -> Any:
        # Older files nested client info under ``metadata`` and tracked remote
        # presence as ``syncedToFirebase`` / ``syncedToSupabase``.
        if not isinstance(value, dict):
            return value
        data = dict(value)
        metadata = data.pop("metadata", None)
        if isinstance(metadata, dict):
            if metadata.get("ip") is not None:
                data.setdefault("ip", metadata["ip"])
            if metadata.get("userAgent") is not None:
                data.setdefault("userAgent", metadata["userAgent"])
            if "syncedToFirebase" in metadata:
                data.setdefault("syncedToRemote", bool(metadata["syncedToFirebase"]))
        for legacy_key in ("syncedToFirebase", "syncedToSupabase"):
            if legacy_key in data:
                flag = bool(data.pop(legacy_key))
                data["syncedToRemote"] = data.get("syncedToRemote", False) or flag
        if "timestamp" not in data and "createdAt" in data:
            data["timestamp"] = data["createdAt"]
        if "status" not in data:
            data["status"] = (
                SubmissionStatus.SYNCED.value if data.get("syncedToRemote") else SubmissionStatus.PENDING.value
            )
        return data

    @property
    def amount(self) -> Any:
        return self.data.get("requestedAmount")


class SubmissionsFile(CamelModel):
    version: str = FILE_FORMAT_VERSION
    created_at: datetime
    last_updated: datetime
    total_count: int = 0
    submissions: list[StoredSubmission] = Field(default_factory=list)


class SyncQueueItem(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    submission_id: str
    attempts: int = 0
    last_attempt: datetime | None = None
    next_retry: datetime
    error: str | None = None

    @field_validator("last_attempt", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if value == "":
            return None
        return value


class SyncQueueFile(CamelModel):
    queue: list[SyncQueueItem] = Field(default_factory=list)
    last_processed: datetime | None = None

    @field_validator("last_processed", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if value == "":
            return None
        return value


class PersistedTo(CamelModel):
    local: bool = False
    remote: bool = False


class IntakeResponse(CamelModel):
    success: bool
    submission_id: str
    persisted: bool
    duplicate: bool
    persisted_to: PersistedTo
    message: str


class SubmissionStats(CamelModel):
    total: int
    synced: int
    pending: int
    failed: int
    last_updated: datetime | None = None
    queue_length: int = 0


class SubmissionListResponse(CamelModel):
    items: list[dict[str, Any]]
    total: int
    source: str
    local_count: int
    remote_count: int


class DrainReportOut(CamelModel):
    processed: int
    succeeded: int
    failed: int
    exhausted: int
    skipped: int


class SyncStatusResponse(CamelModel):
    stats: SubmissionStats
    queue: list[SyncQueueItem]


class SyncTriggerRequest(CamelModel):
    force: bool = False


class SyncTriggerResponse(CamelModel):
    result: DrainReportOut
    stats: SubmissionStats


class DeleteSubmissionResponse(CamelModel):
    submission_id: str
    deleted: bool
    local: bool
    remote: bool


class BroadcastRequest(CamelModel):
    submission_id: str | None = None
    submission: dict[str, Any] | None = None


class BroadcastResponse(CamelModel):
    delivered: int
    active_connections: int
