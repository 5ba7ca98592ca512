"""
Session manager.
Tracks live relay sessions for stats and shutdown.
"""
import asyncio
from typing import Any, Dict, TYPE_CHECKING

from realtime_proxy.utils.logging import get_logger

if TYPE_CHECKING:
    from realtime_proxy.relay.session import RelaySession

logger = get_logger("relay.manager")


class SessionManager:
    """
    Registry of active sessions.

    Sessions never share state with each other; the manager only
    observes them (counts, stats) and closes them on shutdown.
    """

    def __init__(self):
        self._sessions: Dict[int, "RelaySession"] = {}

        # Stats
        self._total_sessions = 0
        self._total_to_upstream = 0
        self._total_to_client = 0
        self._total_dropped = 0

    @property
    def active_count(self) -> int:
        """Number of currently active sessions."""
        return len(self._sessions)

    def register(self, session: "RelaySession"):
        self._sessions[session.session_id] = session
        self._total_sessions += 1
        logger.info(f"Session {session.session_id} started. Active: {self.active_count}")

    def unregister(self, session: "RelaySession"):
        if self._sessions.pop(session.session_id, None) is None:
            return
        self._total_to_upstream += session.messages_to_upstream
        self._total_to_client += session.messages_to_client
        self._total_dropped += session.messages_dropped
        logger.info(f"Session {session.session_id} removed. Active: {self.active_count}")

    def get_all_sessions(self) -> Dict[int, "RelaySession"]:
        return self._sessions.copy()

    def close_all(self, code: int = 1001, reason: str = "Server going away") -> int:
        """
        Ask every session to close its client connection and wind down.

        Returns:
            Number of sessions asked to close
        """
        sessions = list(self._sessions.values())
        if sessions:
            logger.info(f"Closing {len(sessions)} client connections...")
        for session in sessions:
            session.request_close(code, reason)
        return len(sessions)

    async def wait_closed(self, timeout: float = 5.0) -> bool:
        """Wait until no sessions are active. Returns False on timeout."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self._sessions:
            if loop.time() >= deadline:
                logger.warning(f"{self.active_count} sessions still active after {timeout}s")
                return False
            await asyncio.sleep(0.05)
        return True

    def get_stats(self) -> Dict[str, Any]:
        """Get session manager statistics."""
        live = list(self._sessions.values())
        return {
            "active_sessions": self.active_count,
            "total_sessions_lifetime": self._total_sessions,
            "messages_to_upstream": self._total_to_upstream + sum(s.messages_to_upstream for s in live),
            "messages_to_client": self._total_to_client + sum(s.messages_to_client for s in live),
            "messages_dropped": self._total_dropped + sum(s.messages_dropped for s in live),
            "sessions": [s.to_dict() for s in live],
        }
