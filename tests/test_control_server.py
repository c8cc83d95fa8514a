"""Tests for the FastAPI control server."""
import time
from unittest.mock import Mock

import msgpack
import pytest
from fastapi.testclient import TestClient

from conftest import FakeTransport, paint
from controlserver.server import create_app
from linetracer.link.connectionLifecycle import ConnectionLifecycle
from linetracer.link.linkDispatcher import LinkDispatcher
from linetracer.processTracer import processTracer
from linetracer.statemachine.trackingSession import TrackingSession
from linetracer.vision.linePipeline import LinePipeline


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def tracer(bands, transport):
    lifecycle = ConnectionLifecycle(transport, connect_timeout=2.0)
    dispatcher = LinkDispatcher(lifecycle, min_interval=0.0)
    session = TrackingSession(dispatcher)
    tracer = processTracer(Mock(), LinePipeline(bands, threshold=150), lifecycle, dispatcher, session)
    yield tracer
    lifecycle.shutdown(timeout=2.0)


@pytest.fixture
def client(tracer):
    with TestClient(create_app(tracer, telemetry_interval=0.01)) as client:
        yield client


def test_root_before_first_frame(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {
        "status": "running",
        "tracking": False,
        "link": "disconnected",
        "error": None,
        "detected": False,
    }


def test_root_reports_last_frame(client, tracer, blank_frame):
    paint(blank_frame, 175, 190, 160, 240)
    tracer.tracer.process_frame(blank_frame)

    data = client.get("/").json()

    assert data["error"] == 13
    assert data["detected"] is True


def test_status_snapshot(client, tracer, blank_frame):
    tracer.tracer.process_frame(blank_frame)

    data = client.get("/status").json()

    assert data["frame"]["error"] == 999
    assert data["frame"]["status"] == "Loss"
    assert data["session"] == "idle"
    assert data["link"]["state"] == "disconnected"
    assert data["dispatch"]["offered"] == 0
    assert data["settings"] == {"threshold": 150, "mirrored": False, "polarity": "dark", "binary_view": False}


def test_tracking_toggle(client):
    assert client.post("/tracking/start").json() == {"tracking": True, "changed": True}
    assert client.post("/tracking/start").json() == {"tracking": True, "changed": False}
    assert client.post("/tracking/stop").json() == {"tracking": False, "changed": True}
    assert client.post("/tracking/stop").json() == {"tracking": False, "changed": False}


def test_update_settings(client, tracer):
    response = client.put("/settings", json={"threshold": 90, "polarity": "light", "mirrored": True})

    assert response.status_code == 200
    assert response.json() == {"threshold": 90, "mirrored": True, "polarity": "light", "binary_view": False}
    assert tracer.pipeline.mirrored is True


def test_threshold_is_clamped(client):
    assert client.put("/settings", json={"threshold": 400}).json()["threshold"] == 255


def test_unknown_polarity_rejected(client, tracer):
    response = client.put("/settings", json={"polarity": "purple"})

    assert response.status_code == 422
    assert tracer.pipeline.settings()["polarity"] == "dark"


def test_toggle_view(client, tracer):
    assert client.post("/view/toggle").json() == {"binary_view": True}
    assert tracer.tracer.binary_view is True
    assert client.post("/view/toggle").json() == {"binary_view": False}


def test_connect_and_stop_over_http(client, transport):
    response = client.post("/link/connect", params={"wait": True})

    assert response.json() == {"state": "connected", "error": None}
    assert transport.connected is True

    client.post("/tracking/start")
    client.post("/tracking/stop")

    deadline = time.monotonic() + 2.0
    while not transport.written and time.monotonic() < deadline:
        time.sleep(0.01)
    assert transport.written == [b"stop\n"]

    assert client.post("/link/disconnect").json() == {"state": "disconnected"}
    deadline = time.monotonic() + 2.0
    while transport.connected and time.monotonic() < deadline:
        time.sleep(0.01)
    assert transport.disconnect_calls == 1


def test_connect_failure_reported(bands):
    transport = FakeTransport(connect_error=OSError("Bluetooth adapter is off"))
    lifecycle = ConnectionLifecycle(transport, connect_timeout=2.0)
    dispatcher = LinkDispatcher(lifecycle)
    tracer = processTracer(Mock(), LinePipeline(bands), lifecycle, dispatcher, TrackingSession(dispatcher))
    try:
        with TestClient(create_app(tracer)) as client:
            data = client.post("/link/connect?wait=true").json()
    finally:
        lifecycle.shutdown(timeout=2.0)

    assert data == {"state": "disconnected", "error": "Bluetooth adapter is off"}


def test_telemetry_websocket_json(client):
    with client.websocket_connect("/ws/telemetry") as ws:
        first = ws.receive_json()
        second = ws.receive_json()

    assert first["link"]["state"] == "disconnected"
    assert set(second) >= {"frame", "tracking", "settings", "dispatch", "fps"}


def test_telemetry_websocket_msgpack(tracer, blank_frame):
    paint(blank_frame, 175, 190, 160, 240)
    tracer.tracer.process_frame(blank_frame)
    app = create_app(tracer, telemetry_interval=0.01, response_format="msgpack")

    with TestClient(app) as client:
        with client.websocket_connect("/ws/telemetry") as ws:
            data = msgpack.unpackb(ws.receive_bytes(), raw=False)

    assert data["frame"]["error"] == 13
    assert data["frame"]["bands"][0]["name"] == "bottom"
    assert data["session"] == "idle"
