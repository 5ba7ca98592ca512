"""Relay package: per-connection sessions between clients and upstream."""
from .connection import (
    PeerClosed,
    Side,
    SideState,
    StarletteConnection,
    WebSocketsConnection,
)
from .manager import SessionManager
from .models import ErrorDetail, ErrorEvent, EventEnvelope, describe_message
from .session import RelaySession, handle_client_connection

__all__ = [
    "PeerClosed",
    "Side",
    "SideState",
    "StarletteConnection",
    "WebSocketsConnection",
    "SessionManager",
    "ErrorDetail",
    "ErrorEvent",
    "EventEnvelope",
    "describe_message",
    "RelaySession",
    "handle_client_connection",
]
