"""
Realtime Relay – standalone entrypoint
======================================
Single-process ``websockets`` server.

* HTTP requests (``/health``, ``/ready``, ``/stats``, ``/``) are handled
  inside ``process_request`` and never reach the WebSocket handler.
* Only ``LISTEN_PATH`` (``/realtime`` by default) proceeds through the
  WebSocket handshake; each connection becomes one relay session.
* SIGTERM / SIGINT stop the listener, close open sessions and exit 0.

Run:
    python -m realtime_proxy.server
"""

import asyncio
import http
import json
import signal
import sys
from typing import Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.datastructures import Headers
from websockets.http11 import Request, Response

from realtime_proxy.config import Settings
from realtime_proxy.relay.connection import WebSocketsConnection
from realtime_proxy.relay.manager import SessionManager
from realtime_proxy.relay.session import Connector, handle_client_connection
from realtime_proxy.upstream.client import connect_upstream
from realtime_proxy.utils.logging import setup_logging, get_logger

logger = get_logger("server")

SERVICE_NAME = "Realtime Relay"
VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# HTTP response helpers
# ---------------------------------------------------------------------------

def _json_response(status_code: int, body_dict) -> Response:
    """Build a plain HTTP response that aborts the WebSocket handshake."""
    body = json.dumps(body_dict).encode()
    headers = Headers([
        ("Content-Type", "application/json"),
        ("Content-Length", str(len(body))),
        ("Connection", "close"),
    ])
    return Response(status_code, http.HTTPStatus(status_code).phrase, headers, body)


class RelayServer:
    """
    Listener that turns every inbound WebSocket on ``LISTEN_PATH`` into a
    relay session. Settings, session registry and upstream connector are
    handed in; nothing is read from module globals.
    """

    def __init__(
        self,
        settings: Settings,
        connector: Connector = connect_upstream,
        manager: Optional[SessionManager] = None,
    ):
        self.settings = settings
        self.connector = connector
        self.manager = manager or SessionManager()
        self._server: Optional[Server] = None

    # =====================================================================
    # process_request  –  handle plain HTTP before the WS handshake
    # =====================================================================

    async def process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        """Route HTTP requests; return None only for the relay path so the upgrade proceeds."""
        route = request.path.split("?")[0]

        if route == self.settings.LISTEN_PATH:
            return None

        if route == "/ready":
            return _json_response(200, {"ok": True})

        if route == "/health":
            return _json_response(200, {
                "status": "healthy",
                "sessions": self.manager.active_count,
                "upstream_token": "configured" if self.settings.has_token else "missing",
            })

        if route == "/stats":
            return _json_response(200, {"sessions": self.manager.get_stats()})

        if route == "/":
            return _json_response(200, {
                "name": SERVICE_NAME,
                "version": VERSION,
                "websocket": self.settings.LISTEN_PATH,
                "health": "/health",
                "ready": "/ready",
            })

        return _json_response(404, {"error": "Not found"})

    # =====================================================================
    # WebSocket handler  (called only for LISTEN_PATH after handshake)
    # =====================================================================

    async def handler(self, connection: ServerConnection):
        """Relay one inbound connection until both sides are closed."""
        await handle_client_connection(
            WebSocketsConnection(connection),
            settings=self.settings,
            manager=self.manager,
            connector=self.connector,
        )

    # =====================================================================
    # Lifecycle
    # =====================================================================

    async def start(self) -> Server:
        """Bind the listener. Raises OSError if the port is unavailable."""
        self._server = await serve(
            self.handler,
            self.settings.HOST,
            self.settings.PORT,
            process_request=self.process_request,
            max_size=self.settings.MAX_MESSAGE_SIZE,
        )
        return self._server

    @property
    def port(self) -> Optional[int]:
        if self._server is None:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def stop(self):
        """Stop accepting connections and wait for open sessions to finish."""
        if self._server is None:
            return
        logger.info("Shutting down...")
        # Open client connections receive 1001; their sessions close upstream
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("Shutdown complete")


# =========================================================================
# Main
# =========================================================================

def _log_banner(settings: Settings, port: int):
    logger.info("=" * 60)
    logger.info(f"Starting {SERVICE_NAME}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Upstream: {settings.UPSTREAM_URL}")
    logger.info(f"Listening on ws://{settings.HOST}:{port}{settings.LISTEN_PATH}")
    logger.info(f"Health check at http://{settings.HOST}:{port}/health")
    if settings.PUBLIC_URL:
        logger.info(f"Clients should connect to: {settings.PUBLIC_URL}")
    logger.info("=" * 60)


async def main(settings: Optional[Settings] = None) -> int:
    settings = settings or Settings()

    if not settings.has_token:
        logger.warning("TOKEN is not set; upstream connections will be rejected")

    relay = RelayServer(settings)

    loop = asyncio.get_running_loop()
    stop = loop.create_future()

    # Graceful shutdown on SIGTERM / SIGINT
    def _signal_handler():
        if not stop.done():
            stop.set_result(None)

    signals = (signal.SIGTERM, signal.SIGINT)
    for sig in signals:
        loop.add_signal_handler(sig, _signal_handler)

    try:
        await relay.start()
        _log_banner(settings, relay.port)
        await stop  # blocks until signal
    except OSError as e:
        logger.error(f"Server error: {e}")
        return 1
    finally:
        await relay.stop()
        for sig in signals:
            loop.remove_signal_handler(sig)

    return 0


def run():
    settings = Settings()
    setup_logging(settings)
    try:
        sys.exit(asyncio.run(main(settings)))
    except KeyboardInterrupt:
        logger.info("Server stopped by user")


if __name__ == "__main__":
    run()
