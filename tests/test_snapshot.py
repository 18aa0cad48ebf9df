import re
from datetime import datetime

from healthagent.checks import UnsupportedChecks
from healthagent.snapshot import build_snapshot, get_machine_id
from healthserver.ingest import parse_snapshot

WIRE_FIELDS = {
    "machineId", "platform", "hostname", "timestamp", "osInfo", "diskEncryption",
    "osUpdates", "antivirus", "sleepSettings", "systemInfo",
}


def test_machine_id_is_sha256():
    assert re.fullmatch(r"[0-9a-f]{64}", get_machine_id())


def test_snapshot_has_wire_shape():
    snapshot = build_snapshot(UnsupportedChecks(), "abc")
    assert set(snapshot) == WIRE_FIELDS
    assert snapshot["machineId"] == "abc"
    assert datetime.fromisoformat(snapshot["timestamp"]).tzinfo is not None
    assert set(snapshot["osInfo"]) == {"type", "release", "arch", "uptime"}
    assert set(snapshot["systemInfo"]) == {"totalMemory", "freeMemory", "cpus", "loadAverage"}
    assert snapshot["diskEncryption"]["encrypted"] is False


def test_snapshot_is_accepted_by_server():
    parsed = parse_snapshot(build_snapshot(UnsupportedChecks(), "abc"))
    assert parsed.machine_id == "abc"
