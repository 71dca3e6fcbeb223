from __future__ import annotations

import re

from pydantic import BaseModel, Field

from .intervals import DEFAULT_INTERVAL, INTERVAL_RE


class RecordRequest(BaseModel):
    selector: dict[str, str] = Field(default_factory=dict, description="Required labels, ANDed; empty matches all")
    interval: str = Field(DEFAULT_INTERVAL, pattern=INTERVAL_RE.pattern, description="e.g. 30m, 12h, 7d, 2w")


class RecordStatusOut(BaseModel):
    last_rollout_time: str | None = None
    deployments: list[str] = Field(default_factory=list)


class SchedulerStatusOut(BaseModel):
    state: str
    message: str
    next_check_at: str | None = None
    failures: int = 0
    updated_at: str


class RecordOut(BaseModel):
    namespace: str
    name: str
    selector: dict[str, str]
    interval: str
    status: RecordStatusOut
    scheduler: SchedulerStatusOut | None = None


class ReconcileOut(BaseModel):
    record: str
    rolled_out: bool
    requeue_after_s: float | None = None
    deployments: list[str] = Field(default_factory=list)


NAME_RE = re.compile(r"^[a-z0-9]([a-z0-9\-\.]{0,251}[a-z0-9])?$")


def validate_name(kind: str, value: str) -> None:
    if not NAME_RE.match(value):
        raise ValueError(f"Invalid {kind} {value!r}. Use lowercase letters, numbers, '-' and '.' (max 253 chars).")
