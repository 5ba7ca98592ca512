"""
Relay session.
Pairs one inbound client connection with one upstream connection and
copies messages between them until both sides are closed.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from websockets.exceptions import ConnectionClosed, InvalidURI

from realtime_proxy.config import Settings
from realtime_proxy.relay.connection import (
    ABNORMAL_CLOSURE,
    Payload,
    PeerClosed,
    Side,
    SideState,
    close_info,
)
from realtime_proxy.relay.manager import SessionManager
from realtime_proxy.relay.models import ErrorEvent, EventEnvelope, describe_message
from realtime_proxy.utils.logging import get_logger

logger = get_logger("relay.session")

# Opens the outbound connection; see realtime_proxy.upstream.client
Connector = Callable[[Settings], Awaitable[Any]]

UPSTREAM_CLOSED_REASON = "OpenAI connection closed"
CONNECT_FAILED = "Failed to connect to OpenAI API"
INIT_FAILED = "Failed to initialize OpenAI connection"


# =============================================================================
# Events
# =============================================================================

@dataclass
class ClientMessage:
    data: Payload


@dataclass
class ClientClosed:
    code: int
    reason: str


@dataclass
class ClientError:
    exc: Exception


@dataclass
class UpstreamOpened:
    connection: Any


@dataclass
class UpstreamMessage:
    data: Payload


@dataclass
class UpstreamClosed:
    code: int
    reason: str


@dataclass
class UpstreamError:
    exc: Exception
    message: str = CONNECT_FAILED


@dataclass
class SessionShutdown:
    code: int
    reason: str


class RelaySession:
    """
    Per-connection actor.

    Two pump tasks (one per side) turn connection activity into events on
    a single queue; ``run()`` handles those events one at a time, so each
    direction is forwarded in arrival order and no locking is needed.

    Policy:
    - client -> upstream: forwarded only while upstream is OPEN, else dropped
    - upstream -> client: forwarded only while client is OPEN, else discarded
    - upstream closed: client closed with 1000
    - upstream failed: client gets one synthetic error message first
    - client closed: upstream closed, or its handshake cancelled
    """

    def __init__(
        self,
        inbound,
        settings: Settings,
        connector: Connector,
        session_id: Optional[int] = None,
    ):
        self.settings = settings
        self.session_id = session_id if session_id is not None else id(self)
        self.created_at = time.time()
        # JSON logs carry the session id as a field
        self.log = logging.LoggerAdapter(logger, {"extra_data": {"session_id": self.session_id}})

        self.client = Side("client", inbound, SideState.OPEN)
        self.upstream = Side("upstream")

        self._connector = connector
        self._events: asyncio.Queue = asyncio.Queue()
        self._client_task: Optional[asyncio.Task] = None
        self._upstream_task: Optional[asyncio.Task] = None

        # Stats
        self.messages_to_upstream = 0
        self.messages_to_client = 0
        self.messages_dropped = 0

    @property
    def finished(self) -> bool:
        return self.client.is_closed and self.upstream.is_closed

    def request_close(self, code: int = 1001, reason: str = "Server going away"):
        """Ask the session to close both sides. Safe to call from any task."""
        self._events.put_nowait(SessionShutdown(code, reason))

    async def run(self):
        """Relay until both sides are closed."""
        sid = self.session_id
        self.log.info(f"Session {sid}: client connected from {self.client.connection.remote_address}")

        self._client_task = asyncio.create_task(self._pump_client())
        self._upstream_task = asyncio.create_task(self._pump_upstream())

        try:
            while not self.finished:
                event = await self._events.get()
                await self._dispatch(event)
        except asyncio.CancelledError:
            await self._close_side(self.upstream)
            raise
        except Exception as e:
            self.log.error(f"Session {sid}: unexpected error: {e}", exc_info=True)
            await self._close_side(self.upstream)
            await self._close_side(self.client, 1011, "Relay error")
        finally:
            await self._stop_pumps()
            self.log.info(
                f"Session {sid} ended. "
                f"To upstream: {self.messages_to_upstream}, "
                f"to client: {self.messages_to_client}, "
                f"dropped: {self.messages_dropped}"
            )

    async def _dispatch(self, event):
        """Route an event to its handler."""
        if isinstance(event, ClientMessage):
            await self._on_client_message(event.data)
        elif isinstance(event, UpstreamMessage):
            await self._on_upstream_message(event.data)
        elif isinstance(event, UpstreamOpened):
            await self._on_upstream_opened(event.connection)
        elif isinstance(event, UpstreamError):
            await self._on_upstream_error(event.exc, event.message)
        elif isinstance(event, UpstreamClosed):
            await self._on_upstream_closed(event.code, event.reason)
        elif isinstance(event, ClientError):
            self.log.error(f"Session {self.session_id}: client WebSocket error: {event.exc}")
        elif isinstance(event, ClientClosed):
            await self._on_client_closed(event.code, event.reason)
        elif isinstance(event, SessionShutdown):
            await self._on_shutdown(event.code, event.reason)

    # =========================================================================
    # Pumps
    # =========================================================================

    async def _pump_client(self):
        await self._read(self.client.connection, ClientMessage, ClientClosed, ClientError)

    async def _pump_upstream(self):
        self.log.info(f"Session {self.session_id}: connecting to upstream")
        try:
            connection = await self._connector(self.settings)
        except Exception as e:
            message = INIT_FAILED if isinstance(e, (InvalidURI, ValueError, TypeError)) else CONNECT_FAILED
            self._events.put_nowait(UpstreamError(e, message))
            self._events.put_nowait(UpstreamClosed(ABNORMAL_CLOSURE, str(e)))
            return

        # Handle is known before OPEN so a cancelled handshake can still be closed
        self.upstream.connection = connection
        self._events.put_nowait(UpstreamOpened(connection))
        await self._read(connection, UpstreamMessage, UpstreamClosed, UpstreamError)

    async def _read(self, connection, on_message, on_closed, on_error):
        """Turn a connection's receive loop into events."""
        while True:
            try:
                data = await connection.receive()
            except PeerClosed as e:
                self._events.put_nowait(on_closed(e.code, e.reason))
                return
            except Exception as e:
                if isinstance(e, ConnectionClosed):
                    code, reason = close_info(e)
                else:
                    code, reason = ABNORMAL_CLOSURE, str(e)
                self._events.put_nowait(on_error(e))
                self._events.put_nowait(on_closed(code, reason))
                return
            self._events.put_nowait(on_message(data))

    async def _stop_pumps(self):
        for task in (self._client_task, self._upstream_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    # =========================================================================
    # Client -> upstream
    # =========================================================================

    async def _on_client_message(self, data: Payload):
        sid = self.session_id
        envelope = describe_message(data)
        if envelope is None:
            self.log.debug(f"Session {sid}: client sent a non-JSON message (length {len(data)})")
        elif envelope.audio_length is not None:
            self.log.debug(f"Session {sid}: client -> upstream: {envelope.type} (audio {envelope.audio_length} chars)")
        else:
            self.log.debug(f"Session {sid}: client -> upstream: {envelope.type}")

        if not self.upstream.is_open:
            self.messages_dropped += 1
            self.log.warning(f"Session {sid}: upstream not ready, message dropped")
            return

        try:
            await self.upstream.send(data)
            self.messages_to_upstream += 1
        except Exception as e:
            self.log.error(f"Session {sid}: error forwarding client message: {e}")

    # =========================================================================
    # Upstream -> client
    # =========================================================================

    async def _on_upstream_opened(self, connection):
        if self.upstream.is_closed:
            # Client left while the handshake was completing; already closed
            return
        self.upstream.opened(connection)
        self.log.info(f"Session {self.session_id}: connected to upstream")

    async def _on_upstream_message(self, data: Payload):
        sid = self.session_id
        envelope = describe_message(data)
        self._log_upstream_event(envelope, data)

        if not self.client.is_open:
            return

        try:
            await self.client.send(data)
            self.messages_to_client += 1
        except Exception as e:
            self.log.error(f"Session {sid}: error forwarding upstream message: {e}")

    def _log_upstream_event(self, envelope: Optional[EventEnvelope], data: Payload):
        sid = self.session_id
        if envelope is None:
            self.log.warning(f"Session {sid}: could not parse upstream message: {data[:200]!r}")
        elif envelope.is_error:
            self.log.error(f"Session {sid}: upstream reported error: {envelope.error_summary()}")
        else:
            self.log.debug(f"Session {sid}: upstream -> client: {envelope.type}")

    async def _on_upstream_error(self, exc: Exception, message: str):
        sid = self.session_id
        self.log.error(f"Session {sid}: upstream WebSocket error: {exc}")
        if not self.client.is_open:
            return
        event = ErrorEvent.connection_error(message, exc)
        try:
            await self.client.send(event.to_payload())
        except Exception as e:
            self.log.error(f"Session {sid}: failed to notify client of upstream error: {e}")

    async def _on_upstream_closed(self, code: int, reason: str):
        self.upstream.mark_closed()
        self.log.info(f"Session {self.session_id}: upstream connection closed: {code} {reason}")
        if self.client.is_open:
            await self._close_side(self.client, 1000, UPSTREAM_CLOSED_REASON)

    # =========================================================================
    # Client closure
    # =========================================================================

    async def _on_client_closed(self, code: int, reason: str):
        self.client.mark_closed()
        self.log.info(f"Session {self.session_id}: client disconnected: {code} {reason}")

        await self._release_upstream()

    async def _on_shutdown(self, code: int, reason: str):
        self.log.info(f"Session {self.session_id}: shutting down ({code} {reason})")
        await self._close_side(self.client, code, reason)
        await self._release_upstream()

    async def _release_upstream(self):
        if self.upstream.is_open:
            await self._close_side(self.upstream)
        elif not self.upstream.is_closed:
            self.log.info(f"Session {self.session_id}: cancelling upstream handshake")
            if self._upstream_task and not self._upstream_task.done():
                self._upstream_task.cancel()
            await self._close_side(self.upstream)

    async def _close_side(self, side: Side, code: Optional[int] = None, reason: str = ""):
        try:
            await side.close(code, reason)
        except Exception as e:
            self.log.debug(f"Session {self.session_id}: error closing {side.name}: {e}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "created_at": self.created_at,
            "client": self.client.state.value,
            "upstream": self.upstream.state.value,
            "messages_to_upstream": self.messages_to_upstream,
            "messages_to_client": self.messages_to_client,
            "messages_dropped": self.messages_dropped,
            "uptime_seconds": time.time() - self.created_at,
        }


async def handle_client_connection(
    connection,
    settings: Settings,
    manager: SessionManager,
    connector: Connector,
):
    """
    Entry point for an accepted inbound connection.
    Called by both the standalone server and the FastAPI app.
    """
    session = RelaySession(connection, settings, connector)
    manager.register(session)
    try:
        await session.run()
    finally:
        manager.unregister(session)
