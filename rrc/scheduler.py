from __future__ import annotations

import time
from datetime import timedelta
from threading import Condition, Event, Thread
from typing import Callable

from . import db
from .engine import RolloutEngine
from .errors import InvalidInterval, ReconcileCancelled, RecordBusy, StoreError
from .models import ReconcileResult, RecordRef, utc_now
from .recorder import RecordStore
from .runtime import RuntimeState


class WorkQueue:
    """Delayed queue of record references.

    A reference is held at most once; adding it again keeps the earlier due
    time. A reference handed out by get() is not handed out again until
    done() is called for it, so one record is never processed twice at once.
    """

    def __init__(self, now: Callable[[], float] = time.monotonic):
        self._now = now
        self._cond = Condition()
        self._due: dict[RecordRef, float] = {}
        self._processing: set[RecordRef] = set()
        self._shutdown = False

    def add(self, ref: RecordRef, delay_s: float = 0.0) -> None:
        due = self._now() + max(0.0, delay_s)
        with self._cond:
            cur = self._due.get(ref)
            if cur is None or due < cur:
                self._due[ref] = due
            self._cond.notify_all()

    def due_at(self, ref: RecordRef) -> float | None:
        with self._cond:
            return self._due.get(ref)

    def get(self, timeout: float | None = None) -> RecordRef | None:
        """Wait for the earliest due reference. Returns None on timeout or shutdown."""
        deadline = None if timeout is None else self._now() + timeout
        with self._cond:
            while not self._shutdown:
                now = self._now()
                eligible = [(d, r) for r, d in self._due.items() if r not in self._processing]
                wait: float | None = None
                if eligible:
                    due, ref = min(eligible)
                    if due <= now:
                        del self._due[ref]
                        self._processing.add(ref)
                        return ref
                    wait = due - now
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)
            return None

    def claim(self, ref: RecordRef) -> bool:
        """Mark `ref` in flight outside get(). False if it already is."""
        with self._cond:
            if ref in self._processing:
                return False
            self._processing.add(ref)
            return True

    def done(self, ref: RecordRef) -> None:
        with self._cond:
            self._processing.discard(ref)
            self._cond.notify_all()

    def shutdown(self) -> None:
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._due)


class Scheduler:
    """Drives the rollout engine: pop a record, reconcile it, requeue it."""

    def __init__(
        self,
        engine: RolloutEngine,
        records: RecordStore,
        runtime: RuntimeState,
        workers: int = 1,
        resync_interval_s: float = 30.0,
        backoff_base_s: float = 1.0,
        backoff_max_s: float = 300.0,
        queue: WorkQueue | None = None,
    ):
        self.engine = engine
        self.records = records
        self.runtime = runtime
        self.workers = max(1, int(workers))
        self.resync_interval_s = max(1.0, float(resync_interval_s))
        self.backoff_base_s = backoff_base_s
        self.backoff_max_s = backoff_max_s
        self.queue = queue if queue is not None else WorkQueue()
        self._stop = Event()
        self._threads: list[Thread] = []

    def start(self) -> None:
        if any(t.is_alive() for t in self._threads):
            return
        self._threads = [Thread(target=self._resync_loop, daemon=True, name="rrc-resync")]
        for i in range(self.workers):
            self._threads.append(Thread(target=self._worker_loop, daemon=True, name=f"rrc-worker-{i}"))
        for t in self._threads:
            t.start()
        db.log_event("INFO", f"Scheduler started with {self.workers} worker(s)")

    def stop(self) -> None:
        # Setting the event also cancels any reconcile in flight.
        self._stop.set()
        self.queue.shutdown()

    def enqueue(self, ref: RecordRef, delay_s: float = 0.0) -> None:
        self.queue.add(ref, delay_s)

    def backoff(self, failures: int) -> float:
        return min(self.backoff_max_s, self.backoff_base_s * (2 ** max(0, failures - 1)))

    def resync(self) -> int:
        """Enqueue every known record. Returns how many were listed.

        Records waiting out an error backoff keep their due time.
        """
        try:
            records = self.records.list()
        except StoreError as e:
            db.log_event("ERROR", f"Resync failed: {e}")
            return 0
        for r in records:
            if self.runtime.failures(r.ref) and self.queue.due_at(r.ref) is not None:
                continue
            self.queue.add(r.ref)
        return len(records)

    def reconcile_now(self, ref: RecordRef) -> ReconcileResult:
        """Reconcile `ref` on the calling thread, holding it the way a worker does."""
        if not self.queue.claim(ref):
            raise RecordBusy(f"{ref} is already being reconciled")
        try:
            return self.engine.reconcile(ref, cancel=self._stop)
        finally:
            self.queue.done(ref)

    def _resync_loop(self) -> None:
        while not self._stop.is_set():
            self.resync()
            self._stop.wait(self.resync_interval_s)

    def _worker_loop(self) -> None:
        while not self._stop.is_set():
            self.process_one()

    def process_one(self, timeout: float | None = None) -> bool:
        ref = self.queue.get(timeout)
        if ref is None:
            return False
        try:
            self._handle(ref)
        finally:
            self.queue.done(ref)
        return True

    def _handle(self, ref: RecordRef) -> None:
        try:
            result = self.engine.reconcile(ref, cancel=self._stop)
        except ReconcileCancelled:
            db.log_event("WARN", "Reconcile cancelled", record=str(ref))
            return
        except InvalidInterval as e:
            # Not retried until the record changes; the next resync picks it up.
            self.runtime.mark_failure(ref, str(e), None)
            db.log_event("ERROR", str(e), record=str(ref))
            return
        except Exception as e:
            failures = self.runtime.failures(ref) + 1
            delay = self.backoff(failures)
            self.runtime.mark_failure(ref, f"{type(e).__name__}: {e}", utc_now() + timedelta(seconds=delay))
            db.log_event("ERROR", f"Reconcile failed ({type(e).__name__}: {e}); retry in {delay:.0f}s", record=str(ref))
            self.queue.add(ref, delay)
            return

        if result.requeue_after is None:
            self.runtime.forget(ref)
            return

        next_check = utc_now() + result.requeue_after
        if result.rolled_out:
            names = ", ".join(result.affected_workloads) or "none"
            msg = f"Restarted {len(result.affected_workloads)} deployment(s): {names}"
            self.runtime.mark_success(ref, "rolled_out", msg, next_check)
            db.log_event("INFO", msg, record=str(ref))
        else:
            self.runtime.mark_success(ref, "idle", "Not due yet", next_check)
        self.queue.add(ref, result.requeue_after.total_seconds())
