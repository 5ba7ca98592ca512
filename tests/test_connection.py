"""
Tests for the connection adapters.
"""
import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close

from realtime_proxy.relay.connection import PeerClosed, WebSocketsConnection

pytestmark = pytest.mark.asyncio


class ClosingConnection:
    """Stands in for a ``websockets`` connection whose recv() raises."""

    def __init__(self, exc):
        self.exc = exc

    async def recv(self):
        raise self.exc


class TestWebSocketsConnection:

    async def test_normal_close_is_peer_closed(self):
        exc = ConnectionClosedOK(Close(1000, "bye"), Close(1000, "bye"), True)
        with pytest.raises(PeerClosed) as exc_info:
            await WebSocketsConnection(ClosingConnection(exc)).receive()
        assert (exc_info.value.code, exc_info.value.reason) == (1000, "bye")

    async def test_application_close_code_is_peer_closed(self):
        exc = ConnectionClosedError(Close(4000, "invalid_session"), Close(4000, "invalid_session"), True)
        with pytest.raises(PeerClosed) as exc_info:
            await WebSocketsConnection(ClosingConnection(exc)).receive()
        assert (exc_info.value.code, exc_info.value.reason) == (4000, "invalid_session")

    async def test_drop_without_close_frame_propagates(self):
        exc = ConnectionClosedError(None, None)
        with pytest.raises(ConnectionClosedError):
            await WebSocketsConnection(ClosingConnection(exc)).receive()
