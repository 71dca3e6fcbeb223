from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Callable

from .errors import ConflictExhausted, ReconcileCancelled, VersionConflict
from .models import Workload, WorkloadRef
from .selector import WorkloadStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded backoff for version conflicts.

    `attempts` is the total number of writes tried, including the first.
    Delay before retry n (1-based) is delay_s * factor**(n-1), capped at
    max_delay_s, then stretched by up to `jitter` of itself.
    """

    attempts: int = 5
    delay_s: float = 0.010
    factor: float = 1.0
    jitter: float = 0.1
    max_delay_s: float = 1.0

    def backoff(self, retry: int) -> float:
        d = min(self.max_delay_s, self.delay_s * (self.factor ** (retry - 1)))
        if self.jitter > 0:
            d += d * self.jitter * random.random()
        return d


class ConflictSafeWriter:
    """Read-modify-write of a single workload under optimistic concurrency."""

    def __init__(
        self,
        store: WorkloadStore,
        policy: RetryPolicy | None = None,
        wait: Callable[[threading.Event, float], bool] | None = None,
    ):
        self.store = store
        self.policy = policy or RetryPolicy()
        if self.policy.attempts < 1:
            raise ValueError("retry policy needs at least one attempt")
        self._wait = wait or (lambda ev, s: ev.wait(s))

    def write(
        self,
        ref: WorkloadRef,
        mutate: Callable[[Workload], Workload],
        cancel: threading.Event | None = None,
    ) -> Workload:
        """Fetch, mutate and update `ref`, retrying only on version conflicts.

        Each attempt works on a freshly fetched object so the update carries
        the current resource version. WorkloadNotFound and WriteRejected from
        the store propagate on the first occurrence. Raises ConflictExhausted
        once the attempt budget is spent.
        """
        cancel = cancel or threading.Event()
        for attempt in range(1, self.policy.attempts + 1):
            if cancel.is_set():
                raise ReconcileCancelled(f"write to {ref} cancelled")
            current = self.store.get(ref)
            try:
                return self.store.update(mutate(current))
            except VersionConflict:
                if attempt == self.policy.attempts:
                    break
                delay = self.policy.backoff(attempt)
                log.debug("conflict writing %s (attempt %d), retrying in %.3fs", ref, attempt, delay)
                if self._wait(cancel, delay):
                    raise ReconcileCancelled(f"write to {ref} cancelled")
        raise ConflictExhausted(str(ref), self.policy.attempts)
