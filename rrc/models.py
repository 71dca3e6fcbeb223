from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_rfc3339(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_rfc3339(raw: str | None) -> datetime | None:
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    ts = datetime.fromisoformat(raw)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass(frozen=True, order=True)
class RecordRef:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True, order=True)
class WorkloadRef:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class Workload:
    """A deployment-like object as seen by the controller.

    `annotations` live on the object itself, `template_annotations` on its pod
    template. `raw` is the backing API object and is opaque to the core.
    """

    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] | None = None
    template_annotations: dict[str, str] | None = None
    resource_version: str | None = None
    raw: Any = None

    @property
    def ref(self) -> WorkloadRef:
        return WorkloadRef(self.namespace, self.name)


@dataclass(frozen=True)
class DesiredState:
    selector: dict[str, str] = field(default_factory=dict)
    interval: str = "24h"


@dataclass(frozen=True)
class ObservedState:
    last_rollout_time: datetime | None = None
    affected_workloads: list[str] = field(default_factory=list)


@dataclass
class RollingRestart:
    """The desired-state record plus the observed state the engine owns."""

    namespace: str
    name: str
    spec: DesiredState = field(default_factory=DesiredState)
    status: ObservedState = field(default_factory=ObservedState)
    resource_version: str | None = None

    @property
    def ref(self) -> RecordRef:
        return RecordRef(self.namespace, self.name)


@dataclass(frozen=True)
class ReconcileResult:
    # None means "do not requeue" (the record no longer exists).
    requeue_after: timedelta | None
    rolled_out: bool = False
    affected_workloads: list[str] = field(default_factory=list)
