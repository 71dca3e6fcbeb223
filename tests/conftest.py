import os as _os
import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

# Ensure project root is importable (so `import rrc` and `import main` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from rrc import db  # noqa: E402
from rrc.errors import RecordNotFound, VersionConflict, WorkloadNotFound, WriteRejected  # noqa: E402
from rrc.models import RollingRestart, Workload  # noqa: E402
from rrc.selector import matches_labels  # noqa: E402


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeWorkloadStore:
    """In-memory workload store with resource versions and injectable failures."""

    def __init__(self):
        self.items: dict[tuple[str, str], Workload] = {}
        self.conflicts: dict[str, int] = {}  # name -> number of updates to reject with a conflict
        self.rejected: set[str] = set()
        self.list_error: Exception | None = None
        self.on_get = None  # called with the workload name before each get
        self.gets: list[str] = []
        self.updates: list[Workload] = []

    def add(self, name, namespace="default", labels=None, annotations=None, template_annotations=None):
        self.items[(namespace, name)] = Workload(
            name=name,
            namespace=namespace,
            labels=dict(labels or {}),
            annotations=annotations,
            template_annotations=template_annotations,
            resource_version="1",
        )

    def list(self, namespace, selector):
        if self.list_error is not None:
            raise self.list_error
        # Deliberately unsorted so callers cannot rely on order.
        found = [w for (ns, _), w in self.items.items() if ns == namespace and matches_labels(w.labels, selector)]
        return [replace(w) for w in reversed(found)]

    def get(self, ref):
        if self.on_get is not None:
            self.on_get(ref.name)
        self.gets.append(ref.name)
        w = self.items.get((ref.namespace, ref.name))
        if w is None:
            raise WorkloadNotFound(str(ref))
        return replace(
            w,
            labels=dict(w.labels),
            annotations=dict(w.annotations) if w.annotations is not None else None,
            template_annotations=dict(w.template_annotations) if w.template_annotations is not None else None,
        )

    def touch(self, name, namespace="default", **annotations):
        """Simulate another writer changing the object."""
        w = self.items[(namespace, name)]
        w.annotations = {**(w.annotations or {}), **annotations}
        w.resource_version = str(int(w.resource_version) + 1)

    def update(self, workload):
        key = (workload.namespace, workload.name)
        if workload.name in self.rejected:
            raise WriteRejected(f"forbidden: {workload.name}")
        current = self.items.get(key)
        if current is None:
            raise WorkloadNotFound(workload.name)
        remaining = self.conflicts.get(workload.name, 0)
        if remaining > 0:
            self.conflicts[workload.name] = remaining - 1
            self.touch(workload.name, workload.namespace)
            raise VersionConflict(workload.name)
        if workload.resource_version != current.resource_version:
            raise VersionConflict(workload.name)
        stored = replace(workload, resource_version=str(int(current.resource_version) + 1))
        self.items[key] = stored
        self.updates.append(stored)
        return replace(stored)


class FakeRecordStore:
    def __init__(self):
        self.items: dict[tuple[str, str], RollingRestart] = {}
        self.status_error: Exception | None = None
        self.get_error: Exception | None = None
        self.status_writes = 0

    def put(self, record: RollingRestart) -> None:
        record.resource_version = record.resource_version or "1"
        self.items[(record.namespace, record.name)] = record

    def get(self, ref):
        if self.get_error is not None:
            raise self.get_error
        rec = self.items.get((ref.namespace, ref.name))
        if rec is None:
            raise RecordNotFound(str(ref))
        return replace(rec)

    def list(self):
        if self.get_error is not None:
            raise self.get_error
        return [replace(r) for r in self.items.values()]

    def update_status(self, record):
        if self.status_error is not None:
            raise self.status_error
        current = self.items.get((record.namespace, record.name))
        if current is None:
            raise RecordNotFound(str(record.ref))
        if current.resource_version != record.resource_version:
            raise VersionConflict(str(record.ref))
        stored = replace(record, resource_version=str(int(current.resource_version) + 1))
        self.items[(record.namespace, record.name)] = stored
        self.status_writes += 1
        return replace(stored)


@pytest.fixture(autouse=True)
def tmp_db(tmp_path, monkeypatch):
    """Point the event log and sqlite record store at an isolated database."""
    monkeypatch.setattr(db, "settings", replace(db.settings, db_path=str(tmp_path / "test.db")))
    db.init_db()
    return db


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def workloads():
    return FakeWorkloadStore()


@pytest.fixture
def records():
    return FakeRecordStore()


@pytest.fixture
def no_wait():
    """A backoff wait that returns immediately (and records the delays asked for)."""
    delays: list[float] = []

    def wait(event, seconds):
        delays.append(seconds)
        return event.is_set()

    wait.delays = delays
    return wait


