from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from .errors import (
    CandidateListFailure,
    RecordFetchFailure,
    RecordNotFound,
    ReconcileCancelled,
    RolloutWriteFailure,
    StoreError,
)
from .intervals import parse_interval
from .markers import RolloutMarker, apply_marker
from .models import ObservedState, ReconcileResult, RecordRef, RollingRestart, Workload, utc_now
from .recorder import ObservedStateRecorder, RecordStore
from .selector import WorkloadStore, match
from .settings import Settings
from .writer import ConflictSafeWriter, RetryPolicy

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineConfig:
    controller_identity: str = "rolling-restart-controller"
    api_group: str = "rrc.example.com"
    clock: Callable[[], datetime] = utc_now
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_settings(cls, s: Settings, clock: Callable[[], datetime] = utc_now) -> "EngineConfig":
        return cls(
            controller_identity=s.controller_identity,
            api_group=s.api_group,
            clock=clock,
            retry=RetryPolicy(
                attempts=max(1, s.conflict_retry_attempts),
                delay_s=s.conflict_retry_delay_ms / 1000.0,
                factor=s.conflict_retry_factor,
                jitter=s.conflict_retry_jitter,
            ),
        )


def rollout_due(now: datetime, last: datetime | None, interval: timedelta) -> bool:
    """A rollout is due when none happened yet, or strictly more than `interval` ago."""
    return last is None or now - last > interval


class RolloutEngine:
    """Decides whether a record's rollout is due and carries it out.

    One call to reconcile() handles one record synchronously. Candidates are
    restarted one after the other; the first failure aborts the batch and the
    observed state is left exactly as it was.
    """

    def __init__(
        self,
        records: RecordStore,
        workloads: WorkloadStore,
        config: EngineConfig | None = None,
        wait: Callable[[threading.Event, float], bool] | None = None,
    ):
        self.records = records
        self.workloads = workloads
        self.config = config or EngineConfig()
        self.writer = ConflictSafeWriter(workloads, self.config.retry, wait=wait)
        self.recorder = ObservedStateRecorder(records)

    def reconcile(self, ref: RecordRef, cancel: threading.Event | None = None) -> ReconcileResult:
        cancel = cancel or threading.Event()

        try:
            record = self.records.get(ref)
        except RecordNotFound:
            log.info("record %s not found, ignoring", ref)
            return ReconcileResult(requeue_after=None)
        except StoreError as e:
            raise RecordFetchFailure(f"failed to fetch {ref}: {e}") from e

        interval = parse_interval(record.spec.interval)
        now = self.config.clock()
        last = record.status.last_rollout_time

        if not rollout_due(now, last, interval):
            wait = interval - (now - last)
            log.debug("record %s not due, next check in %s", ref, wait)
            return ReconcileResult(requeue_after=wait, affected_workloads=list(record.status.affected_workloads))

        log.debug("record %s due (last=%s, now=%s, interval=%s)", ref, last, now, interval)
        names = self._restart_candidates(record, cancel)

        self._check_cancel(cancel, ref)
        self.recorder.record(record, ObservedState(last_rollout_time=now, affected_workloads=names))
        log.info("record %s rolled out %d workload(s)", ref, len(names))
        return ReconcileResult(requeue_after=interval, rolled_out=True, affected_workloads=names)

    def _restart_candidates(self, record: RollingRestart, cancel: threading.Event) -> list[str]:
        self._check_cancel(cancel, record.ref)
        try:
            candidates = match(self.workloads, record.namespace, record.spec.selector)
        except StoreError as e:
            raise CandidateListFailure(f"failed to list workloads for {record.ref}: {e}") from e

        candidates = sorted(candidates, key=lambda w: w.name)
        for w in candidates:
            self._check_cancel(cancel, record.ref)
            log.debug("restarting workload %s", w.ref)
            try:
                self.writer.write(w.ref, self._marker_for(record), cancel=cancel)
            except StoreError as e:
                # ConflictExhausted, WriteRejected or WorkloadNotFound
                raise RolloutWriteFailure(str(w.ref), e) from e
        return sorted({w.name for w in candidates})

    def _marker_for(self, record: RollingRestart) -> Callable[[Workload], Workload]:
        def mutate(w: Workload) -> Workload:
            marker = RolloutMarker(
                restarted_at=self.config.clock(),
                restarted_by=self.config.controller_identity,
                record=str(record.ref),
                api_group=self.config.api_group,
            )
            return apply_marker(w, marker)

        return mutate

    @staticmethod
    def _check_cancel(cancel: threading.Event, ref: RecordRef) -> None:
        if cancel.is_set():
            raise ReconcileCancelled(f"reconcile of {ref} cancelled")
