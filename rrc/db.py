from __future__ import annotations

import json
import os
import sqlite3
from dataclasses import dataclass
from typing import Any

from .errors import RecordNotFound, VersionConflict
from .models import DesiredState, ObservedState, RecordRef, RollingRestart, format_rfc3339, parse_rfc3339, utc_now
from .settings import settings


def _ts() -> str:
    return format_rfc3339(utc_now())


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (a bind mount that did not exist
    yet gets created as one), the DB file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "rrc.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS records (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              namespace TEXT NOT NULL,
              name TEXT NOT NULL,
              selector TEXT NOT NULL,          -- JSON object
              interval TEXT NOT NULL,
              last_rollout_time TEXT,
              deployments TEXT NOT NULL,       -- JSON array
              resource_version INTEGER NOT NULL DEFAULT 1,
              created_at TEXT NOT NULL,
              UNIQUE(namespace, name)
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              record TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(level: str, message: str, record: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, record, message) VALUES (?, ?, ?, ?)",
            (_ts(), level.upper(), record, message),
        )


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


@dataclass(frozen=True)
class RecordRow:
    id: int
    namespace: str
    name: str
    selector: str
    interval: str
    last_rollout_time: str | None
    deployments: str
    resource_version: int
    created_at: str

    def to_record(self) -> RollingRestart:
        return RollingRestart(
            namespace=self.namespace,
            name=self.name,
            spec=DesiredState(selector=json.loads(self.selector), interval=self.interval),
            status=ObservedState(
                last_rollout_time=parse_rfc3339(self.last_rollout_time),
                affected_workloads=list(json.loads(self.deployments)),
            ),
            resource_version=str(self.resource_version),
        )


def upsert_record(namespace: str, name: str, selector: dict[str, str], interval: str) -> RollingRestart:
    """Create a record or replace its spec. The observed state is left as is."""
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO records (namespace, name, selector, interval, deployments, created_at)
            VALUES (?, ?, ?, ?, '[]', ?)
            ON CONFLICT(namespace, name) DO UPDATE SET
              selector=excluded.selector,
              interval=excluded.interval,
              resource_version=resource_version+1
            """,
            (namespace, name, json.dumps(selector, sort_keys=True), interval, _ts()),
        )
        row = conn.execute("SELECT * FROM records WHERE namespace=? AND name=?", (namespace, name)).fetchone()
        return RecordRow(**dict(row)).to_record()


def get_record(namespace: str, name: str) -> RollingRestart | None:
    with connect() as conn:
        row = conn.execute("SELECT * FROM records WHERE namespace=? AND name=?", (namespace, name)).fetchone()
        return RecordRow(**dict(row)).to_record() if row else None


def list_records(namespace: str | None = None) -> list[RollingRestart]:
    with connect() as conn:
        if namespace:
            rows = conn.execute("SELECT * FROM records WHERE namespace=? ORDER BY name", (namespace,)).fetchall()
        else:
            rows = conn.execute("SELECT * FROM records ORDER BY namespace, name").fetchall()
        return [RecordRow(**dict(r)).to_record() for r in rows]


def delete_record(namespace: str, name: str) -> bool:
    with connect() as conn:
        cur = conn.execute("DELETE FROM records WHERE namespace=? AND name=?", (namespace, name))
        return cur.rowcount > 0


def update_record_status(
    namespace: str,
    name: str,
    last_rollout_time: str | None,
    deployments: list[str],
    expected_version: int,
) -> int:
    """Compare-and-set the observed state. Returns the new resource version.

    Raises VersionConflict when the stored version moved on, RecordNotFound
    when the record is gone.
    """
    with connect() as conn:
        cur = conn.execute(
            """
            UPDATE records
            SET last_rollout_time=?, deployments=?, resource_version=resource_version+1
            WHERE namespace=? AND name=? AND resource_version=?
            """,
            (last_rollout_time, json.dumps(deployments), namespace, name, expected_version),
        )
        if cur.rowcount == 1:
            return expected_version + 1
        exists = conn.execute("SELECT 1 FROM records WHERE namespace=? AND name=?", (namespace, name)).fetchone()
    if not exists:
        raise RecordNotFound(f"{namespace}/{name}")
    raise VersionConflict(f"{namespace}/{name} changed since version {expected_version}")


class SqliteRecordStore:
    """Desired-state records kept in the local database instead of a custom resource."""

    def __init__(self, namespace: str | None = None):
        self.namespace = namespace

    def get(self, ref: RecordRef) -> RollingRestart:
        rec = get_record(ref.namespace, ref.name)
        if rec is None:
            raise RecordNotFound(str(ref))
        return rec

    def list(self) -> list[RollingRestart]:
        return list_records(self.namespace)

    def update_status(self, record: RollingRestart) -> RollingRestart:
        last = record.status.last_rollout_time
        version = update_record_status(
            record.namespace,
            record.name,
            format_rfc3339(last) if last else None,
            list(record.status.affected_workloads),
            int(record.resource_version or 0),
        )
        return RollingRestart(
            namespace=record.namespace,
            name=record.name,
            spec=record.spec,
            status=record.status,
            resource_version=str(version),
        )
