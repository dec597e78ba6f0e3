"""HTTP and WebSocket surface tests using the Starlette test client."""

import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

import lab_shells
from lab_shells.app import create_app
from lab_shells.gateway import SessionGateway
from lab_shells.relay import error_notice
from tests.mocks.session_mock import MockAdapterFactory, handshake


def settle(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        assert time.monotonic() < deadline, "condition not met before timeout"
        time.sleep(0.01)


@pytest.fixture
def factory():
    return MockAdapterFactory(greeting=b"welcome\r\n", echo=True)


@pytest.fixture
def client(config, factory, event_bus):
    gateway = SessionGateway(config, adapter_factory=factory, event_bus=event_bus)
    with TestClient(create_app(gateway=gateway)) as client:
        yield client


class TestHttpRoutes:
    def test_health(self, client):
        resp = client.get("/api/health")

        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["data"]["live"] == 0
        assert body["data"]["total"] == 0

    def test_list_empty(self, client):
        resp = client.get("/api/sessions")
        assert resp.json() == {"ok": True, "data": []}

    def test_unknown_state_filter(self, client):
        resp = client.get("/api/sessions", params={"state": "sleeping"})
        assert resp.status_code == 400

    def test_unknown_session(self, client):
        resp = client.get("/api/sessions/ls_0_deadbeef")

        assert resp.status_code == 404
        assert resp.json()["detail"] == "Session not found"


class TestTerminalSocket:
    def test_interactive_session(self, client, factory):
        with client.websocket_connect("/ws/ssh") as ws:
            ws.send_text(handshake("linux", "web1", initialColumns=100, initialRows=30))
            assert ws.receive_text() == "welcome\r\n"

            ws.send_text("uname -a\r")
            assert ws.receive_text() == "uname -a\r"

            listing = client.get("/api/sessions", params={"state": "active"}).json()["data"]
            assert len(listing) == 1
            assert listing[0]["target"] == "web1"
            assert listing[0]["columns"] == 100

            detail = client.get(f"/api/sessions/{listing[0]['id']}").json()["data"]
            assert detail["adapter"]["kind"] == "container_exec"
            assert detail["bytes_in"] == len("uname -a\r")

        assert len(factory.adapters) == 1
        assert factory.adapters[0].started_with.rows == 30

    def test_malformed_handshake_closes(self, client, factory):
        with client.websocket_connect("/ws/ssh") as ws:
            ws.send_text("hello?")
            assert ws.receive_text() == error_notice("Handshake is not valid JSON")
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_text()

        assert exc.value.code == 1008
        assert factory.adapters == []

    def test_missing_username_closes(self, client, factory):
        with client.websocket_connect("/ws/ssh") as ws:
            ws.send_text('{"targetKind": "linux", "targetName": "web1"}')
            assert ws.receive_text() == error_notice("Missing required field: username")
            with pytest.raises(WebSocketDisconnect):
                ws.receive_text()

        assert factory.adapters == []


def test_custom_socket_path(config, factory, event_bus):
    gateway = SessionGateway(config.replace(ws_path="/terminal"), adapter_factory=factory, event_bus=event_bus)
    with TestClient(create_app(gateway=gateway)) as client:
        with client.websocket_connect("/terminal") as ws:
            ws.send_text(handshake("eos", None, "10.0.0.5"))
            assert ws.receive_text() == "welcome\r\n"

    assert factory.adapters[0].target == "10.0.0.5"


class TestEventStream:
    """Lifecycle events pushed over /ws/events."""

    def test_session_lifecycle_in_order(self, client, event_bus):
        with client.websocket_connect("/ws/events") as events:
            settle(lambda: event_bus.subscriber_count == 1)

            with client.websocket_connect("/ws/ssh") as ws:
                ws.send_text(handshake("linux", "web1"))
                assert ws.receive_text() == "welcome\r\n"

            received = [events.receive_json() for _ in range(5)]

        assert [e["type"] for e in received] == [
            "session.created",
            "session.handshaking",
            "session.active",
            "session.closing",
            "session.closed",
        ]
        assert len({e["session_id"] for e in received}) == 1

    def test_unsubscribes_on_disconnect(self, client, event_bus):
        with client.websocket_connect("/ws/events"):
            settle(lambda: event_bus.subscriber_count == 1)

        settle(lambda: event_bus.subscriber_count == 0)


def test_app_uses_shared_gateway(monkeypatch, config):
    monkeypatch.setattr(lab_shells, "_gateway_instance", None)
    monkeypatch.setattr(lab_shells, "_gateway_lock", None)
    monkeypatch.setattr(lab_shells, "_gateway_kwargs", None)
    app = create_app(config)

    with TestClient(app) as client:
        assert app.state.gateway is lab_shells._gateway_instance
        assert app.state.gateway.config is config
        assert client.get("/api/health").json()["ok"] is True
