from __future__ import annotations


# Store-level errors raised by workload and record stores.


class StoreError(Exception):
    pass


class VersionConflict(StoreError):
    """The object changed since it was read (stale write-version token)."""


class WorkloadNotFound(StoreError):
    pass


class RecordNotFound(StoreError):
    pass


class WriteRejected(StoreError):
    """Any terminal write failure other than a conflict or a missing object."""


class ConflictExhausted(StoreError):
    def __init__(self, ref: str, attempts: int):
        super().__init__(f"write to {ref} still conflicting after {attempts} attempts")
        self.ref = ref
        self.attempts = attempts


# Errors surfaced by a reconcile call.


class RolloutError(Exception):
    retryable = True


class InvalidInterval(RolloutError):
    retryable = False

    def __init__(self, interval: str, reason: str):
        super().__init__(f"invalid interval {interval!r}: {reason}")
        self.interval = interval


class RecordFetchFailure(RolloutError):
    pass


class CandidateListFailure(RolloutError):
    pass


class RolloutWriteFailure(RolloutError):
    def __init__(self, workload: str, cause: Exception):
        super().__init__(f"failed to restart workload {workload}: {cause}")
        self.workload = workload
        self.cause = cause


class StatusPersistFailure(RolloutError):
    pass


class ReconcileCancelled(RolloutError):
    pass


# Scheduler errors.


class RecordBusy(Exception):
    """The record is already being reconciled by a worker."""
