"""Session registry - live SessionProxy objects keyed by session id.

One registry instance serves all client connections. It enforces the
concurrent session cap and provides bulk shutdown for the app lifespan.
"""

import logging

from voice_gateway.services.session_proxy.exceptions import SessionCapacityError
from voice_gateway.services.session_proxy.proxy import SessionProxy

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Tracks active sessions with a hard capacity limit.

    Usage::

        registry = SessionRegistry(max_sessions=1000)
        registry.register(proxy)
        try:
            await proxy.run()
        finally:
            registry.unregister(proxy.session_id)

        # Shutdown
        await registry.teardown_all()
    """

    def __init__(self, max_sessions: int = 1000) -> None:
        self._max_sessions = max_sessions
        self._sessions: dict[str, SessionProxy] = {}

    @property
    def max_sessions(self) -> int:
        return self._max_sessions

    @property
    def active_session_count(self) -> int:
        return len(self._sessions)

    def register(self, proxy: SessionProxy) -> None:
        """Admit a session.

        Raises:
            SessionCapacityError: If the registry is at capacity.
            ValueError: If the session id is already registered.
        """
        if proxy.session_id in self._sessions:
            raise ValueError(f"Session {proxy.session_id} is already registered")
        if len(self._sessions) >= self._max_sessions:
            raise SessionCapacityError(self._max_sessions)
        self._sessions[proxy.session_id] = proxy
        logger.info("Session %s registered (%d active)", proxy.session_id, len(self._sessions))

    def get(self, session_id: str) -> SessionProxy | None:
        return self._sessions.get(session_id)

    def unregister(self, session_id: str) -> None:
        """Forget a session. Safe to call multiple times or on unknown ids."""
        if self._sessions.pop(session_id, None) is not None:
            logger.info("Session %s unregistered (%d active)", session_id, len(self._sessions))

    async def teardown_all(self, code: int = 1001, reason: str = "Server shutting down") -> None:
        """Close every client connection. Used during shutdown."""
        sessions = list(self._sessions.values())
        if not sessions:
            logger.info("SessionRegistry teardown: no active sessions")
            return

        logger.info("SessionRegistry teardown: closing %d active sessions", len(sessions))
        for proxy in sessions:
            try:
                await proxy.shutdown(code=code, reason=reason)
            except Exception as exc:
                logger.error("Error shutting down session %s: %s", proxy.session_id, exc)
        logger.info("SessionRegistry teardown complete")
