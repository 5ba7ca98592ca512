"""
Connection primitives shared by both sides of a relay session.

The session only ever talks to a small duck-typed interface:
``receive()``, ``send()``, ``close()`` and ``remote_address``.
Adapters below map the ``websockets`` library and Starlette/FastAPI
WebSockets onto it so the relay logic is identical under either server.
"""
import enum
from typing import Any, Optional, Tuple, Union

from fastapi.websockets import WebSocket, WebSocketState
from websockets.exceptions import ConnectionClosed

Payload = Union[str, bytes]

# Close code used when a connection drops without a closing handshake
ABNORMAL_CLOSURE = 1006


class PeerClosed(Exception):
    """Raised by ``receive()`` when the remote end finished a clean close."""

    def __init__(self, code: int = 1000, reason: str = ""):
        super().__init__(f"peer closed ({code}) {reason}".rstrip())
        self.code = code
        self.reason = reason


class SideState(str, enum.Enum):
    """Lifecycle of one side of a session. No transition leaves CLOSED."""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class Side:
    """
    One end of a session: a connection handle plus its state.

    ``close()`` is idempotent; a side that is already CLOSED is left alone.
    """

    def __init__(self, name: str, connection=None, state: SideState = SideState.CONNECTING):
        self.name = name
        self.connection = connection
        self.state = state

    @property
    def is_open(self) -> bool:
        return self.state is SideState.OPEN

    @property
    def is_closed(self) -> bool:
        return self.state is SideState.CLOSED

    def opened(self, connection) -> None:
        if self.is_closed:
            raise RuntimeError(f"{self.name} side is closed and cannot reopen")
        self.connection = connection
        self.state = SideState.OPEN

    def mark_closed(self) -> None:
        self.state = SideState.CLOSED

    async def send(self, data: Payload) -> None:
        await self.connection.send(data)

    async def close(self, code: Optional[int] = None, reason: str = "") -> bool:
        """Close the side. Returns False if it was already closed."""
        if self.is_closed:
            return False
        self.state = SideState.CLOSED
        if self.connection is None:
            return True
        if code is None:
            await self.connection.close()
        else:
            await self.connection.close(code, reason)
        return True


def close_info(exc: Exception) -> Tuple[int, str]:
    """Extract (code, reason) from a ``websockets`` ConnectionClosed exception."""
    rcvd = getattr(exc, "rcvd", None)
    if rcvd is not None:
        return rcvd.code, rcvd.reason
    return ABNORMAL_CLOSURE, str(exc)


class WebSocketsConnection:
    """
    Wraps a ``websockets`` asyncio connection (server or client side).

    Text frames come back as ``str`` and binary frames as ``bytes``; both
    are handed to ``send()`` unchanged so the frame type is preserved.
    Any close frame from the peer, whatever its code, becomes
    ``PeerClosed``; a drop without one propagates as ``ConnectionClosedError``.
    """

    def __init__(self, connection) -> None:
        self._conn = connection

    async def receive(self) -> Payload:
        try:
            return await self._conn.recv()
        except ConnectionClosed as e:
            if e.rcvd is None:
                raise
            raise PeerClosed(e.rcvd.code, e.rcvd.reason) from e

    async def send(self, data: Payload) -> None:
        await self._conn.send(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self._conn.close(code, reason)

    @property
    def remote_address(self) -> Any:
        return getattr(self._conn, "remote_address", None)


class StarletteConnection:
    """
    Wraps an accepted ``fastapi.WebSocket`` so it looks like the
    ``websockets`` adapter above.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket

    async def receive(self) -> Payload:
        message = await self._ws.receive()
        if message["type"] == "websocket.disconnect":
            raise PeerClosed(message.get("code", 1000), message.get("reason") or "")
        if message.get("bytes") is not None:
            return message["bytes"]
        return message.get("text") or ""

    async def send(self, data: Payload) -> None:
        if isinstance(data, bytes):
            await self._ws.send_bytes(data)
        else:
            await self._ws.send_text(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._ws.application_state == WebSocketState.DISCONNECTED:
            return
        await self._ws.close(code=code, reason=reason)

    @property
    def remote_address(self) -> Any:
        client = self._ws.client
        return (client.host, client.port) if client else None
