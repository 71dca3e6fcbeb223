from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from threading import Lock

from .models import RecordRef, format_rfc3339, utc_now


def _now() -> str:
    return format_rfc3339(utc_now())


@dataclass
class RecordStatus:
    record: str
    state: str  # queued|idle|rolled_out|failed|deleted
    message: str = ""
    next_check_at: str | None = None
    failures: int = 0
    updated_at: str = field(default_factory=_now)


class RuntimeState:
    """In-memory scheduler bookkeeping, keyed by record reference."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.statuses: dict[RecordRef, RecordStatus] = {}

    def _get(self, ref: RecordRef) -> RecordStatus:
        st = self.statuses.get(ref)
        if st is None:
            st = RecordStatus(record=str(ref), state="queued")
            self.statuses[ref] = st
        return st

    def mark_success(self, ref: RecordRef, state: str, message: str, next_check_at: datetime | None) -> None:
        with self.lock:
            st = self._get(ref)
            st.state = state
            st.message = message
            st.failures = 0
            st.next_check_at = format_rfc3339(next_check_at) if next_check_at else None
            st.updated_at = _now()

    def mark_failure(self, ref: RecordRef, message: str, next_check_at: datetime | None) -> int:
        """Record a failed reconcile and return the consecutive failure count."""
        with self.lock:
            st = self._get(ref)
            st.state = "failed"
            st.message = message
            st.failures += 1
            st.next_check_at = format_rfc3339(next_check_at) if next_check_at else None
            st.updated_at = _now()
            return st.failures

    def failures(self, ref: RecordRef) -> int:
        with self.lock:
            st = self.statuses.get(ref)
            return st.failures if st else 0

    def forget(self, ref: RecordRef) -> None:
        with self.lock:
            self.statuses.pop(ref, None)

    def get(self, ref: RecordRef) -> RecordStatus | None:
        with self.lock:
            st = self.statuses.get(ref)
            return replace(st) if st else None

    def list(self) -> list[RecordStatus]:
        with self.lock:
            return [replace(st) for st in self.statuses.values()]
