from __future__ import annotations


class IntakeError(Exception):
    """Base class for persistence-core failures."""


class TransientStoreError(IntakeError):
    """The remote store was unreachable or timed out; the write may be retried."""


class PersistentStoreError(IntakeError):
    """The local store could not be written. Indicates host-level trouble."""


class SyncExhausted(IntakeError):
    """A submission never reached the remote store within the retry ceiling."""

    def __init__(self, submission_id: str, attempts: int, last_error: str | None = None) -> None:
        super().__init__(
            f"Submission {submission_id} failed to sync after {attempts} attempts: {last_error or 'unknown error'}"
        )
        self.submission_id = submission_id
        self.attempts = attempts
        self.last_error = last_error
