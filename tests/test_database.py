from datetime import datetime, timedelta, timezone

import pytest

from healthserver.database import AlertStore, to_iso
from healthserver.errors import PersistenceError
from healthserver.ingest import parse_snapshot


def test_insert_alert_returns_record(store):
    alert = store.insert_alert("m", "disk_encryption", "high", "Disk Encryption Disabled", "msg")
    assert alert.id
    assert alert.machine_id == "m"
    assert not alert.is_resolved
    assert alert.resolved_at is None
    assert store.find_open_alert("m", "disk_encryption") == alert


def test_second_open_alert_of_same_type_is_rejected(store):
    assert store.insert_alert("m", "os_updates", "medium", "t", "m") is not None
    assert store.insert_alert("m", "os_updates", "high", "t", "m") is None
    assert len(store.list_open_alerts("m")) == 1


def test_resolved_alerts_do_not_block_new_ones(store):
    store.insert_alert("m", "os_updates", "medium", "t", "m")
    assert store.resolve_open_alerts("m", "os_updates") == 1
    assert store.resolve_open_alerts("m", "os_updates") == 0
    assert store.insert_alert("m", "os_updates", "medium", "t", "m") is not None


def test_resolve_alert_by_id(store):
    alert = store.insert_alert("m", "sleep_timeout", "low", "t", "m")
    resolved = store.resolve_alert(alert.id)
    assert resolved.is_resolved
    assert resolved.resolved_at is not None
    assert store.resolve_alert(9999) is None


def test_list_alerts_filters(store):
    store.insert_alert("a", "sleep_timeout", "low", "t", "m")
    store.insert_alert("a", "os_updates", "medium", "t", "m")
    store.insert_alert("b", "os_updates", "medium", "t", "m")
    store.resolve_open_alerts("a", "os_updates")

    assert len(store.list_alerts()) == 3
    assert len(store.list_alerts(machine_id="a")) == 2
    assert len(store.list_alerts(resolved=True)) == 1
    assert len(store.list_alerts(resolved=False, limit=1)) == 1


def test_delete_resolved_before_keeps_open_and_recent(store):
    now = datetime(2026, 10, 18, tzinfo=timezone.utc)
    store.insert_alert("m", "disk_encryption", "high", "t", "m", created_at=now - timedelta(days=90))
    store.insert_alert("m", "os_updates", "medium", "t", "m", created_at=now - timedelta(days=90))
    store.insert_alert("m", "sleep_timeout", "low", "t", "m", created_at=now - timedelta(days=90))
    store.resolve_open_alerts("m", "os_updates", resolved_at=now - timedelta(days=45))
    store.resolve_open_alerts("m", "sleep_timeout", resolved_at=now - timedelta(days=5))

    assert store.delete_resolved_before(now - timedelta(days=30)) == 1
    remaining = sorted(a.alert_type.value for a in store.list_alerts())
    assert remaining == ["disk_encryption", "sleep_timeout"]


def test_machine_and_reports(store, make_snapshot):
    store.upsert_machine(parse_snapshot(make_snapshot(timestamp="2026-10-01T10:00:00+00:00")))
    first = store.insert_report(parse_snapshot(make_snapshot(timestamp="2026-10-01T10:00:00+00:00")))
    snapshot = parse_snapshot(make_snapshot(timestamp="2026-10-02T10:00:00+00:00"))
    snapshot.hostname = "renamed"
    store.upsert_machine(snapshot)
    second = store.insert_report(snapshot)

    machine = store.get_machine("machine-1")
    assert machine.hostname == "renamed"
    assert machine.last_seen == datetime(2026, 10, 2, 10, tzinfo=timezone.utc)
    assert machine.os_info["arch"] == "x86_64"
    assert [m.machine_id for m in store.list_machines()] == ["machine-1"]

    reports = store.list_reports("machine-1")
    assert [r.id for r in reports] == [second, first]
    assert store.latest_report("machine-1").payload["diskEncryption"]["encrypted"] is True
    assert store.latest_report("unknown") is None
    assert store.get_machine("unknown") is None


def test_to_iso_is_fixed_width_utc():
    assert to_iso(datetime(2026, 1, 1)) == "2026-01-01T00:00:00.000000+00:00"
    offset = timezone(timedelta(hours=2))
    assert to_iso(datetime(2026, 1, 1, 2, tzinfo=offset)) == "2026-01-01T00:00:00.000000+00:00"


def test_sqlite_errors_become_persistence_errors(tmp_path):
    store = AlertStore(str(tmp_path / "missing-tables.db"))
    with pytest.raises(PersistenceError):
        store.list_open_alerts("m")
