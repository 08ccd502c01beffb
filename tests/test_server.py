import random

import pytest
from fastapi.testclient import TestClient

from conftest import connect_simulator
from nr5g_analyzer.config import EngineSettings
from nr5g_analyzer.engine import Engine
from nr5g_analyzer.server.app import create_app


@pytest.fixture
def client(engine: Engine) -> TestClient:
    return TestClient(create_app(engine))


def test_get_state(client: TestClient) -> None:
    response = client.get("/api/state")
    assert response.status_code == 200
    body = response.json()
    assert body["connectionState"] == "disconnected"
    assert body["model"] == "T&M SPAX3044"
    assert len(body["spectrum"]) == 256
    assert body["analysis"]["bounds"]["ampMax"] <= 0


def test_get_analysis_reports_path(client: TestClient) -> None:
    body = client.get("/api/analysis").json()
    assert body["path"] == "inline"
    assert body["analysis"]["generation"] == body["generation"]
    assert len(body["analysis"]["coords"]) == 512


def test_connect_and_toggle(client: TestClient, scheduler) -> None:
    assert client.post("/api/acquisition/toggle").status_code == 409

    body = client.post("/api/connect").json()
    assert body["state"]["connectionState"] == "connecting"
    scheduler.fire_connect()

    body = client.post("/api/acquisition/toggle").json()
    assert body["state"]["acquisitionState"] == "capturing"

    body = client.post("/api/disconnect").json()
    assert body["state"]["connectionState"] == "disconnected"
    assert body["state"]["acquisitionState"] == "idle"


def test_config_round_trip(client: TestClient) -> None:
    assert client.get("/api/config").json()["config"]["spanGHz"] == 6.0
    body = client.post("/api/config", json={"spanGHz": 2.5, "path_mode": "2RF"}).json()
    assert body["config"]["spanGHz"] == 2.5
    assert body["config"]["pathMode"] == "2RF"


def test_config_rejects_invalid_enum(client: TestClient) -> None:
    response = client.post("/api/config", json={"pathMode": "9RF"})
    assert response.status_code == 400


def test_presets(client: TestClient) -> None:
    presets = client.get("/api/presets").json()["presets"]
    assert set(presets) == {"5g-fr2", "satcom", "radar"}
    assert presets["radar"]["centerFrequencyGHz"] == 77.0

    body = client.post("/api/presets/recall", json={"name": "5g-fr2"}).json()
    assert body["config"]["triggerMode"] == "video"
    assert body["config"]["pathMode"] == "correlation"

    assert client.post("/api/presets/recall", json={"name": "nope"}).status_code == 404
    assert client.post("/api/presets/recall", json={}).status_code == 400


def test_marker_endpoints(client: TestClient) -> None:
    body = client.post("/api/markers", json={"frequency": 28e9}).json()
    assert [m["label"] for m in body["markers"]] == ["M1"]
    assert body["markerAutoPeakSearch"] is False

    body = client.post("/api/markers/M1/move", json={"frequency": 26e9}).json()
    assert body["markers"][0]["frequency"] == pytest.approx(26e9, rel=1e-2)
    assert client.post("/api/markers/M7/move", json={"frequency": 26e9}).status_code == 404

    assert client.post("/api/markers", json={}).status_code == 400
    assert client.delete("/api/markers/M7").status_code == 404
    assert client.delete("/api/markers/M1").json()["markers"] == []

    body = client.post("/api/markers/auto", json={"enabled": True}).json()
    assert len(body["markers"]) == 3
    assert client.post("/api/markers/auto", json={"enabled": "yes"}).status_code == 400

    body = client.delete("/api/markers").json()
    assert body == {"markers": [], "markerAutoPeakSearch": False}


def test_viewport_and_reset(client: TestClient, engine: Engine, scheduler) -> None:
    body = client.post("/api/viewport", json={"width": 200, "height": 80}).json()
    assert body["analysis"]["width"] == 200
    assert client.post("/api/viewport", json={"width": 200}).status_code == 400

    connect_simulator(engine, scheduler)
    body = client.post("/api/reset").json()
    assert body["state"]["connectionState"] == "disconnected"
    assert body["state"]["eventLog"] == []


def test_websocket_streams_snapshots(client: TestClient) -> None:
    with client.websocket_connect("/ws/state") as websocket:
        first = websocket.receive_json()
        assert first["type"] == "state"
        assert first["seq"] == 1
        assert first["payload"]["connectionState"] == "disconnected"

        client.post("/api/config", json={"spanGHz": 3.0})
        update = websocket.receive_json()
        assert update["seq"] == 2
        assert update["payload"]["config"]["spanGHz"] == 3.0


def test_default_app_uses_environment(monkeypatch) -> None:
    monkeypatch.setenv("NR5G_TRACE_POINTS", "64")
    app = create_app()
    engine = app.state.engine
    try:
        assert len(engine.state.spectrum) == 64
        assert isinstance(engine.settings, EngineSettings)
    finally:
        engine.close()


def test_importing_server_module_builds_no_engine() -> None:
    import nr5g_analyzer.server.app as server_app

    assert not hasattr(server_app, "app")
    assert callable(server_app.create_app)


def test_main_runs_uvicorn_with_app_factory(monkeypatch) -> None:
    from nr5g_analyzer import app as entrypoint

    calls = []
    monkeypatch.setattr(entrypoint.uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))
    monkeypatch.delenv("NR5G_BRIDGE_URL", raising=False)

    assert entrypoint.main(["--host", "0.0.0.0", "--port", "9001"]) == 0
    assert calls == [
        ("nr5g_analyzer.server.app:create_app", {"factory": True, "host": "0.0.0.0", "port": 9001}),
    ]
