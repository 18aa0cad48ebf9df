import copy
from datetime import timedelta

from healthagent.gate import has_state_changed, heartbeat_due, should_transmit


def test_first_snapshot_is_always_sent(make_snapshot):
    assert should_transmit(None, make_snapshot())


def test_unchanged_within_heartbeat_is_skipped(make_snapshot):
    previous = make_snapshot(timestamp="2026-10-01T12:00:00+00:00")
    current = make_snapshot(timestamp="2026-10-02T11:59:59+00:00")
    assert not should_transmit(previous, current)


def test_metadata_changes_are_ignored(make_snapshot):
    previous = make_snapshot(timestamp="2026-10-01T12:00:00+00:00")
    current = make_snapshot(timestamp="2026-10-01T12:30:00+00:00")
    current["hostname"] = "renamed"
    current["systemInfo"]["freeMemory"] = 1
    current["osInfo"]["uptime"] = 99999
    assert not has_state_changed(previous, current)
    assert not should_transmit(previous, current)


def test_category_change_is_sent_regardless_of_elapsed_time(make_snapshot):
    previous = make_snapshot(timestamp="2026-10-01T12:00:00+00:00")
    for key, change in [
        ("diskEncryption", {"encrypted": False}),
        ("osUpdates", {"upToDate": False, "daysBehind": 3}),
        ("antivirus", {"enabled": False}),
        ("sleepSettings", {"sleepTimeout": 30}),
    ]:
        current = make_snapshot(timestamp="2026-10-01T12:00:01+00:00")
        current[key] = dict(current[key], **change)
        assert should_transmit(previous, current), key


def test_nested_change_is_detected(make_snapshot):
    previous = make_snapshot()
    previous["antivirus"]["details"] = {"engines": ["a", "b"]}
    current = copy.deepcopy(previous)
    current["antivirus"]["details"]["engines"].append("c")
    assert has_state_changed(previous, current)


def test_error_marker_counts_as_change(make_snapshot):
    previous = make_snapshot()
    current = make_snapshot(sleepSettings={"error": True, "message": "gsettings missing"})
    assert should_transmit(previous, current)


def test_heartbeat_after_24_hours(make_snapshot):
    previous = make_snapshot(timestamp="2026-10-01T12:00:00+00:00")
    current = make_snapshot(timestamp="2026-10-02T12:00:00+00:00")
    assert heartbeat_due(previous, current)
    assert should_transmit(previous, current)


def test_heartbeat_uses_explicit_now_and_interval(make_snapshot):
    previous = make_snapshot(timestamp="2026-10-01T12:00:00Z")
    current = make_snapshot(timestamp="2026-10-01T12:05:00Z")
    assert not should_transmit(previous, current, now="2026-10-01T12:59:00Z", heartbeat=timedelta(hours=1))
    assert should_transmit(previous, current, now="2026-10-01T13:00:00Z", heartbeat=timedelta(hours=1))
