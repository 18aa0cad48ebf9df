from healthserver import config


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_unencrypted_disk_then_fixed(client, make_snapshot):
    response = client.post("/api/machines", json=make_snapshot(diskEncryption={"encrypted": False}))
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["alerts"]["disk_encryption"] == "created"

    alerts = client.get("/api/alerts", params={"machineId": "machine-1", "resolved": "false"}).json()
    assert len(alerts) == 1
    assert alerts[0]["alertType"] == "disk_encryption"
    assert alerts[0]["severity"] == "high"
    assert alerts[0]["isResolved"] is False

    risk = client.get("/api/machines/machine-1/risk").json()
    assert risk == {"score": 14, "level": "low", "alertCount": 1, "rawScore": 7}

    response = client.post("/api/machines", json=make_snapshot(
        timestamp="2026-10-01T13:00:00+00:00", diskEncryption={"encrypted": True}
    ))
    assert response.json()["alerts"]["disk_encryption"] == "resolved"

    assert client.get("/api/alerts", params={"machineId": "machine-1", "resolved": "false"}).json() == []
    resolved = client.get("/api/alerts", params={"machineId": "machine-1", "resolved": "true"}).json()
    assert resolved[0]["resolvedAt"] is not None
    assert client.get("/api/machines/machine-1/risk").json()["score"] == 0


def test_resubmission_does_not_duplicate(client, store, make_snapshot):
    payload = make_snapshot(sleepSettings={"sleepTimeout": 45})
    client.post("/api/machines", json=payload)
    response = client.post("/api/machines", json=payload)
    assert response.json()["alerts"]["sleep_timeout"] == "exists"
    assert len(store.list_open_alerts("machine-1")) == 1


def test_malformed_snapshot_is_rejected(client, store, make_snapshot):
    payload = make_snapshot(diskEncryption={"encrypted": False})
    del payload["antivirus"]
    payload["timestamp"] = "yesterday"

    response = client.post("/api/machines", json=payload)
    assert response.status_code == 422
    fields = {error["field"] for error in response.json()["detail"]["details"]}
    assert {"antivirus", "timestamp"} <= fields
    assert store.list_alerts() == []
    assert store.get_machine("machine-1") is None


def test_empty_machine_id_is_rejected(client, make_snapshot):
    response = client.post("/api/machines", json=make_snapshot(machine_id=""))
    assert response.status_code == 422


def test_machine_listing_and_detail(client, make_snapshot):
    client.post("/api/machines", json=make_snapshot(machine_id="a", antivirus={"installed": False}))
    client.post("/api/machines", json=make_snapshot(machine_id="b"))

    listing = client.get("/api/machines", params={"limit": 1}).json()
    assert listing["pagination"] == {"limit": 1, "offset": 0, "total": 1}
    assert listing["data"][0]["machineId"] == "a"
    assert listing["data"][0]["latestReport"]["payload"]["hostname"] == "workstation-01"

    detail = client.get("/api/machines/a").json()
    assert detail["platform"] == "linux"
    assert [a["alertType"] for a in detail["recentAlerts"]] == ["antivirus_missing"]

    reports = client.get("/api/machines/a/reports").json()
    assert len(reports) == 1

    assert client.get("/api/machines", params={"limit": 0}).status_code == 422


def test_unknown_machine(client):
    assert client.get("/api/machines/nope").status_code == 404
    assert client.get("/api/machines/nope/risk").status_code == 404


def test_manual_resolve(client, make_snapshot):
    client.post("/api/machines", json=make_snapshot(osUpdates={"upToDate": False, "daysBehind": 40}))
    alert = client.get("/api/alerts").json()[0]
    assert alert["severity"] == "high"

    response = client.post(f"/api/alerts/{alert['id']}/resolve")
    assert response.status_code == 200
    assert response.json()["data"]["isResolved"] is True
    assert client.post("/api/alerts/9999/resolve").status_code == 404


def test_alert_summary(client, make_snapshot):
    client.post("/api/machines", json=make_snapshot(
        diskEncryption={"encrypted": False}, sleepSettings={"sleepTimeout": 20}
    ))
    summary = client.get("/api/alerts/summary").json()
    assert summary["totalAlerts"] == 2
    assert summary["high"] == 1
    assert summary["low"] == 1


def test_token_is_enforced_when_configured(client, monkeypatch, make_snapshot):
    monkeypatch.setattr(config, "API_TOKEN", "secret")
    assert client.post("/api/machines", json=make_snapshot()).status_code == 401
    response = client.post(
        "/api/machines", json=make_snapshot(), headers={"Authorization": "Bearer secret"}
    )
    assert response.status_code == 201
    assert client.get("/health").status_code == 200
