import pytest
from fastapi.testclient import TestClient

from healthserver import config
from healthserver.alerts import AlertEngine
from healthserver.database import AlertStore
from healthserver.main import app, get_store

COMPLIANT = {
    "diskEncryption": {"encrypted": True, "method": "LUKS", "status": "LUKS encryption detected"},
    "osUpdates": {"upToDate": True, "updatesAvailable": False, "pendingCount": 0, "daysBehind": 0},
    "antivirus": {"installed": True, "enabled": True, "definitionsOutdated": False, "name": "ClamAV"},
    "sleepSettings": {"sleepTimeout": 5, "compliant": True},
}

def snapshot_payload(machine_id="machine-1", timestamp="2026-10-01T12:00:00+00:00", **categories):
    payload = {
        "machineId": machine_id,
        "platform": "linux",
        "hostname": "workstation-01",
        "timestamp": timestamp,
        "osInfo": {"type": "Linux", "release": "6.8.0", "arch": "x86_64", "uptime": 3600},
        "systemInfo": {"totalMemory": 16000000000, "freeMemory": 8000000000, "cpus": 8, "loadAverage": [0.5, 0.4, 0.3]},
    }
    for key, value in COMPLIANT.items():
        payload[key] = dict(value)
    payload.update(categories)
    return payload

@pytest.fixture
def store(tmp_path):
    store = AlertStore(str(tmp_path / "health.db"))
    store.create_tables()
    return store

@pytest.fixture
def engine(store):
    return AlertEngine(store)

@pytest.fixture
def client(store, monkeypatch):
    monkeypatch.setattr(config, "API_TOKEN", None)
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_snapshot():
    return snapshot_payload
