from __future__ import annotations

from typing import Mapping, Protocol

from .models import Workload, WorkloadRef


class WorkloadStore(Protocol):
    def list(self, namespace: str, selector: Mapping[str, str]) -> list[Workload]: ...

    def get(self, ref: WorkloadRef) -> Workload: ...

    def update(self, workload: Workload) -> Workload: ...


def matches_labels(labels: Mapping[str, str] | None, selector: Mapping[str, str]) -> bool:
    """Return True if `labels` carry every key/value pair of `selector`."""
    labels = labels or {}
    return all(labels.get(k) == v for k, v in selector.items())


def to_label_selector(selector: Mapping[str, str]) -> str:
    """Render a selector as the `k=v,k2=v2` form the Kubernetes API expects."""
    for key in selector:
        if not key:
            raise ValueError("selector keys must be non-empty")
    return ",".join(f"{k}={v}" for k, v in sorted(selector.items()))


def match(store: WorkloadStore, namespace: str, selector: Mapping[str, str]) -> list[Workload]:
    """Return the workloads in `namespace` matching `selector`.

    An empty selector matches everything in scope. Ordering is whatever the
    store returns; callers that need determinism sort themselves.
    """
    return [w for w in store.list(namespace, dict(selector)) if matches_labels(w.labels, selector)]
