"""
Upstream connector for the OpenAI Realtime API.
Opens one outbound WebSocket per relay session; no reconnection.
"""
from websockets.asyncio.client import connect

from realtime_proxy.config import Settings
from realtime_proxy.relay.connection import WebSocketsConnection
from realtime_proxy.utils.logging import get_logger

logger = get_logger("upstream.client")


async def connect_upstream(settings: Settings) -> WebSocketsConnection:
    """
    Open the outbound connection with credentials attached.

    Raises whatever ``websockets`` raises on failure (InvalidURI,
    InvalidStatus, OSError, TimeoutError); the session reports it to
    the client.
    """
    logger.debug(f"Opening upstream connection to {settings.UPSTREAM_URL}")
    connection = await connect(
        settings.UPSTREAM_URL,
        additional_headers=settings.upstream_headers(),
        open_timeout=settings.UPSTREAM_OPEN_TIMEOUT,
        max_size=settings.MAX_MESSAGE_SIZE,
        close_timeout=5.0,
    )
    return WebSocketsConnection(connection)
