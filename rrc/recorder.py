from __future__ import annotations

from dataclasses import replace
from typing import Protocol

from .errors import StatusPersistFailure, StoreError
from .models import ObservedState, RecordRef, RollingRestart


class RecordStore(Protocol):
    def get(self, ref: RecordRef) -> RollingRestart: ...

    def list(self) -> list[RollingRestart]: ...

    def update_status(self, record: RollingRestart) -> RollingRestart: ...


class ObservedStateRecorder:
    """Writes the engine's observed state back onto the desired-state record."""

    def __init__(self, records: RecordStore):
        self.records = records

    def record(self, record: RollingRestart, observed: ObservedState) -> RollingRestart:
        # The record's resource_version guards the write: if another writer
        # already advanced the status, the store rejects this one.
        updated = replace(record, status=observed)
        try:
            return self.records.update_status(updated)
        except StoreError as e:
            raise StatusPersistFailure(f"failed to update status of {record.ref}: {e}") from e
