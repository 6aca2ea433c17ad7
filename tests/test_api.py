from __future__ import annotations

import time
from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from soledge.main import create_app
from soledge.store import MemoryStore


def _wait_for_devices(client: TestClient, count: int) -> list[dict]:
    for _ in range(50):
        devices = client.get("/api/devices").json()
        if len(devices) == count:
            return devices
        time.sleep(0.01)
    raise AssertionError("devices never arrived")


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore({"Fan": 1, "Light": 0, "sensorData/temperature": 26.0})


@pytest.fixture()
def client(settings, store):
    app = create_app(settings, store=store)
    with TestClient(app) as c:
        _wait_for_devices(c, 2)
        yield c


def test_health(client):
    body = client.get("/health").json()
    assert body["ok"] is True
    assert body["running"] is True
    assert body["store"] == "MemoryStore"


def test_device_list_and_summary(client):
    devices = {d["id"]: d for d in client.get("/api/devices").json()}
    assert devices["Fan"]["isOn"] is True
    assert devices["Light"]["isOn"] is False
    assert devices["Fan"]["ratedPowerW"] == 75.0
    assert devices["Fan"]["status"] == "online"

    summary = client.get("/api/summary").json()
    assert summary == {"totalDevices": 2, "onlineDevices": 2, "activeDevices": 1, "totalUnitsKWh": 2.7}


def test_toggle_writes_store_and_logs_user_action(client, store):
    r = client.post("/api/devices/Light/toggle")
    assert r.status_code == 200
    assert r.json()["isOn"] is True
    assert ("Light", 1) in store.writes

    activity = client.get("/api/activity").json()
    assert activity[0]["kind"] == "user"
    assert "LED Light" in activity[0]["message"]


def test_toggle_unknown_device(client):
    r = client.post("/api/devices/Heater/toggle")
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"


def test_failed_toggle_reports_and_reverts(client, store):
    store.fail_keys.add("Fan")
    r = client.post("/api/devices/Fan/toggle")
    assert r.status_code == 502
    assert r.json()["code"] == "WRITE_FAILED"

    devices = {d["id"]: d for d in client.get("/api/devices").json()}
    assert devices["Fan"]["isOn"] is True
    assert client.get("/api/status").json()["writeError"]


def test_group_toggle(client, store):
    r = client.post("/api/devices/toggle_group", json={"deviceIds": ["Fan", "Light"]})
    assert r.status_code == 200
    states = {d["id"]: d["isOn"] for d in r.json()}
    assert states == {"Fan": False, "Light": True}
    assert store.snapshot("") == {"Fan": 0, "Light": 1}


def test_group_toggle_validation(client):
    r = client.post("/api/devices/toggle_group", json={"deviceIds": []})
    assert r.status_code == 400
    assert r.json()["code"] == "BAD_REQUEST"


def test_control_inputs_and_shutdown(client, store):
    # Fan (75W) alone stays under 80W
    r = client.put("/api/control", json={"enabled": True, "productionW": 40})
    assert r.status_code == 200
    body = r.json()
    assert body["lowProduction"] is True
    assert body["highConsumption"] is False

    client.post("/api/devices/Light/toggle")
    for _ in range(50):
        if all(not d["isOn"] for d in client.get("/api/devices").json()):
            break
        time.sleep(0.01)
    assert all(not d["isOn"] for d in client.get("/api/devices").json())
    kinds = [e["kind"] for e in client.get("/api/activity").json()]
    assert kinds.count("control") == 1


def test_control_rejects_out_of_range(client):
    r = client.put("/api/control", json={"productionW": 250})
    assert r.status_code == 400


def test_predictor_address_roundtrip(client):
    assert client.get("/api/profile/predictor").json() == {"address": ""}
    r = client.put("/api/profile/predictor", json={"address": "192.168.1.40:5000"})
    assert r.json() == {"address": "192.168.1.40:5000"}
    assert client.get("/api/profile/predictor").json() == {"address": "192.168.1.40:5000"}


def test_status_reports_sensor_readings(client):
    for _ in range(50):
        status = client.get("/api/status").json()
        if status["temperature"] is not None:
            break
        time.sleep(0.01)
    assert status["temperature"] == 26.0
    assert status["connectivityError"] is None
    assert status["configurationError"] is None


def test_empty_store_reports_configuration_error(settings):
    app = create_app(replace(settings, device_encoding="inverted"), store=MemoryStore({"Heater": 1}))
    with TestClient(app) as c:
        for _ in range(50):
            status = c.get("/api/status").json()
            if status["configurationError"]:
                break
            time.sleep(0.01)
        assert "no recognized devices" in status["configurationError"]
        assert c.get("/api/devices").json() == []


def test_websocket_sends_device_list(client):
    with client.websocket_connect("/ws") as ws:
        message = ws.receive_json()
    assert message["type"] == "DEVICES"
    assert {d["id"] for d in message["devices"]} == {"Fan", "Light"}


def test_websocket_streams_activity(client):
    with client.websocket_connect("/ws") as ws:
        initial = [ws.receive_json(), ws.receive_json()]
        assert [m["type"] for m in initial] == ["DEVICES", "ACTIVITY"]
        assert initial[1]["activity"] == []

        client.post("/api/devices/Light/toggle")
        for _ in range(10):
            message = ws.receive_json()
            if message["type"] == "ACTIVITY":
                break
    assert message["activity"][0]["kind"] == "user"
    assert "LED Light" in message["activity"][0]["message"]
