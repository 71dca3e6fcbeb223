from datetime import datetime, timezone

import pytest

from rrc import db
from rrc.errors import RecordNotFound, VersionConflict
from rrc.models import ObservedState, RecordRef, RollingRestart


def test_log_event_writes_row():
    db.log_event("info", "hello", record="default/a")
    ev = db.latest_events(1)[0]
    assert ev["level"] == "INFO"
    assert ev["message"] == "hello"
    assert ev["record"] == "default/a"


def test_upsert_record_keeps_status():
    rec = db.upsert_record("default", "a", {"app": "web"}, "1h")
    assert rec.spec.selector == {"app": "web"}
    assert rec.status == ObservedState()
    assert rec.resource_version == "1"

    store = db.SqliteRecordStore()
    ts = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    store.update_status(
        RollingRestart(
            namespace="default",
            name="a",
            spec=rec.spec,
            status=ObservedState(ts, ["d1"]),
            resource_version=rec.resource_version,
        )
    )

    again = db.upsert_record("default", "a", {"app": "api"}, "2h")
    assert again.spec.interval == "2h"
    assert again.status.last_rollout_time == ts
    assert again.status.affected_workloads == ["d1"]
    assert again.resource_version == "3"


def test_status_write_is_compare_and_set():
    rec = db.upsert_record("default", "a", {}, "1m")
    store = db.SqliteRecordStore()
    fresh = store.get(RecordRef("default", "a"))

    rec.status = ObservedState(datetime(2026, 1, 1, tzinfo=timezone.utc), ["d1"])
    updated = store.update_status(rec)
    assert updated.resource_version == "2"

    # second writer holding the old version loses
    fresh.status = ObservedState(datetime(2026, 1, 2, tzinfo=timezone.utc), ["d2"])
    with pytest.raises(VersionConflict):
        store.update_status(fresh)
    assert store.get(RecordRef("default", "a")).status.affected_workloads == ["d1"]


def test_missing_record():
    store = db.SqliteRecordStore()
    with pytest.raises(RecordNotFound):
        store.get(RecordRef("default", "nope"))

    rec = db.upsert_record("default", "a", {}, "1m")
    assert db.delete_record("default", "a") is True
    assert db.delete_record("default", "a") is False
    with pytest.raises(RecordNotFound):
        store.update_status(rec)


def test_list_records_namespace_filter():
    db.upsert_record("team-a", "x", {}, "1h")
    db.upsert_record("team-b", "y", {}, "1h")

    assert [r.name for r in db.SqliteRecordStore().list()] == ["x", "y"]
    assert [r.name for r in db.SqliteRecordStore("team-b").list()] == ["y"]


def test_directory_db_path(tmp_path, monkeypatch):
    from dataclasses import replace

    d = tmp_path / "data"
    d.mkdir()
    monkeypatch.setattr(db, "settings", replace(db.settings, db_path=str(d)))
    db.init_db()
    db.log_event("INFO", "x")
    assert (d / "rrc.db").exists()
