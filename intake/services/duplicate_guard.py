from __future__ import annotations

import hashlib
import re
import threading
import time
import unicodedata
from dataclasses import dataclass
from typing import Any, Callable, Mapping

IDENTITY_FIELDS = ("fullName", "phone")
AMOUNT_FIELD = "requestedAmount"


def _normalize_text(value: Any) -> str:
    text = unicodedata.normalize("NFKC", str(value or ""))
    return " ".join(text.split()).casefold()


def _normalize_phone(value: Any) -> str:
    return re.sub(r"\D", "", str(value or ""))


def _normalize_amount(value: Any) -> str:
    try:
        return str(int(float(value)))
    except (TypeError, ValueError):
        return _normalize_text(value)


def fingerprint(payload: Mapping[str, Any]) -> str:
    """Stable key over identity fields and amount. Time never takes part."""
    parts = [
        _normalize_text(payload.get("fullName")),
        _normalize_phone(payload.get("phone")),
        _normalize_amount(payload.get(AMOUNT_FIELD)),
    ]
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()


@dataclass(slots=True)
class FingerprintEntry:
    first_seen: float
    submission_id: str
    # Set by the claimant; resolves once the first write has settled.
    outcome: Any = None


class DuplicateGuard:
    """Short-window fingerprint cache. Expired entries are dropped lazily on access."""

    def __init__(
        self,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self._clock = clock
        self._entries: dict[str, FingerprintEntry] = {}
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if now - entry.first_seen > self.window_seconds]
        for key in expired:
            del self._entries[key]

    def claim(self, key: str, id_factory: Callable[[], str]) -> tuple[FingerprintEntry, bool]:
        """Return ``(entry, created)``.

        ``created`` is False when ``key`` was already claimed inside the window;
        ``id_factory`` is only called for a fresh claim.
        """
        with self._lock:
            now = self._clock()
            self._prune(now)
            existing = self._entries.get(key)
            if existing is not None:
                return existing, False
            entry = FingerprintEntry(first_seen=now, submission_id=id_factory())
            self._entries[key] = entry
            return entry, True

    def release(self, key: str, submission_id: str | None = None) -> None:
        """Forget ``key``. With ``submission_id``, only if that claim is still the current one."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and (submission_id is None or entry.submission_id == submission_id):
                del self._entries[key]

    def __contains__(self, key: str) -> bool:
        with self._lock:
            self._prune(self._clock())
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._entries)
