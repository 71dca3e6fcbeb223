import threading

import pytest

from rrc.errors import ConflictExhausted, ReconcileCancelled, WorkloadNotFound, WriteRejected
from rrc.models import WorkloadRef
from rrc.writer import ConflictSafeWriter, RetryPolicy

REF = WorkloadRef("default", "d1")


def _stamp(w):
    w.annotations = {**(w.annotations or {}), "stamp": "yes"}
    return w


def test_write_succeeds_first_time(workloads, no_wait):
    workloads.add("d1")
    out = ConflictSafeWriter(workloads, RetryPolicy(attempts=5), wait=no_wait).write(REF, _stamp)

    assert out.annotations == {"stamp": "yes"}
    assert workloads.gets == ["d1"]
    assert no_wait.delays == []


@pytest.mark.parametrize("k", [2, 3, 5])
def test_conflicts_then_success_within_budget(workloads, no_wait, k):
    workloads.add("d1")
    workloads.conflicts["d1"] = k - 1

    out = ConflictSafeWriter(workloads, RetryPolicy(attempts=5), wait=no_wait).write(REF, _stamp)

    assert out.annotations["stamp"] == "yes"
    assert workloads.items[("default", "d1")].annotations["stamp"] == "yes"
    # a fresh read before every attempt
    assert workloads.gets == ["d1"] * k
    assert len(no_wait.delays) == k - 1


def test_concurrent_change_is_not_lost(workloads, no_wait):
    workloads.add("d1")
    calls = {"n": 0}

    def other_writer(name):
        # Another controller edits the object between our first read and write.
        if calls["n"] == 0:
            calls["n"] += 1
            original_update = workloads.update

            def racing_update(w):
                workloads.update = original_update
                workloads.touch("d1", owner="someone-else")
                return original_update(w)

            workloads.update = racing_update

    workloads.on_get = other_writer
    ConflictSafeWriter(workloads, RetryPolicy(attempts=3), wait=no_wait).write(REF, _stamp)

    final = workloads.items[("default", "d1")].annotations
    assert final == {"owner": "someone-else", "stamp": "yes"}
    assert len(workloads.gets) == 2


def test_exhausted_budget_raises_conflict_exhausted(workloads, no_wait):
    workloads.add("d1")
    workloads.conflicts["d1"] = 10

    with pytest.raises(ConflictExhausted) as exc:
        ConflictSafeWriter(workloads, RetryPolicy(attempts=4), wait=no_wait).write(REF, _stamp)

    assert exc.value.attempts == 4
    assert len(workloads.gets) == 4
    assert len(no_wait.delays) == 3
    assert "stamp" not in (workloads.items[("default", "d1")].annotations or {})


def test_rejected_write_is_not_retried(workloads, no_wait):
    workloads.add("d1")
    workloads.rejected.add("d1")

    with pytest.raises(WriteRejected):
        ConflictSafeWriter(workloads, RetryPolicy(attempts=5), wait=no_wait).write(REF, _stamp)
    assert workloads.gets == ["d1"]


def test_missing_workload_is_not_retried(workloads, no_wait):
    with pytest.raises(WorkloadNotFound):
        ConflictSafeWriter(workloads, RetryPolicy(attempts=5), wait=no_wait).write(REF, _stamp)
    assert workloads.gets == ["d1"]


def test_cancel_during_backoff(workloads):
    workloads.add("d1")
    workloads.conflicts["d1"] = 10
    cancel = threading.Event()

    def wait(event, seconds):
        event.set()
        return True

    with pytest.raises(ReconcileCancelled):
        ConflictSafeWriter(workloads, RetryPolicy(attempts=5), wait=wait).write(REF, _stamp, cancel=cancel)
    assert workloads.gets == ["d1"]


def test_backoff_curve_is_capped():
    p = RetryPolicy(attempts=10, delay_s=0.1, factor=2.0, jitter=0.0, max_delay_s=0.5)
    assert [p.backoff(n) for n in range(1, 6)] == [0.1, 0.2, 0.4, 0.5, 0.5]


def test_backoff_jitter_stays_in_bounds():
    p = RetryPolicy(delay_s=0.01, factor=1.0, jitter=0.1)
    for n in range(1, 20):
        assert 0.01 <= p.backoff(n) <= 0.011 + 1e-9


def test_policy_needs_an_attempt(workloads):
    with pytest.raises(ValueError):
        ConflictSafeWriter(workloads, RetryPolicy(attempts=0))
