"""
Tests for the FastAPI application.
"""
import pytest
from fastapi.testclient import TestClient
from fastapi import WebSocketDisconnect

from conftest import EchoConnection, FakeConnection
from realtime_proxy.main import create_app


def scripted_upstream(*messages, close_code=None, connection_class=FakeConnection):
    """Connector whose upstream replays ``messages`` then optionally closes."""

    async def connector(settings):
        connection = connection_class()
        for message in messages:
            connection.feed(message)
        if close_code is not None:
            connection.hang_up(close_code, "")
        return connection

    return connector


class TestHttpRoutes:

    def test_health(self, settings):
        app = create_app(settings, connector=scripted_upstream())
        with TestClient(app) as client:
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "sessions": 0,
            "upstream_token": "configured",
        }

    def test_root_and_stats(self, settings):
        app = create_app(settings, connector=scripted_upstream())
        with TestClient(app) as client:
            root = client.get("/").json()
            stats = client.get("/stats").json()
        assert root["websocket"] == "/realtime"
        assert root["docs"] == "disabled"
        assert stats["sessions"]["active_sessions"] == 0


class TestRelayEndpoint:

    def test_upstream_messages_then_close(self, settings):
        connector = scripted_upstream('{"type":"response.done"}', close_code=1000)
        app = create_app(settings, connector=connector)
        with TestClient(app) as client:
            with client.websocket_connect("/realtime") as ws:
                assert ws.receive_text() == '{"type":"response.done"}'
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    ws.receive_text()
        assert exc_info.value.code == 1000
        assert "OpenAI connection closed" in exc_info.value.reason

    def test_client_messages_are_relayed(self, settings):
        connector = scripted_upstream(
            '{"type":"session.created"}', connection_class=EchoConnection
        )
        app = create_app(settings, connector=connector)
        with TestClient(app) as client:
            with client.websocket_connect("/realtime") as ws:
                # Upstream is open once its first event arrives
                assert ws.receive_text() == '{"type":"session.created"}'

                ws.send_text('{"type":"response.create"}')
                assert ws.receive_text() == '{"type":"response.create"}'

                ws.send_bytes(b"\x01\x02")
                assert ws.receive_bytes() == b"\x01\x02"

    def test_upstream_failure_reported(self, settings):
        async def failing(settings):
            raise OSError("connection refused")

        app = create_app(settings, connector=failing)
        with TestClient(app) as client:
            with client.websocket_connect("/realtime") as ws:
                error = ws.receive_json()
                assert error["type"] == "error"
                assert error["error"]["details"] == "connection refused"
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    ws.receive_text()
        assert exc_info.value.code == 1000
