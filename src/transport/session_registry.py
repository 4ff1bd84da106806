"""
Stream Session Registry - the set of open SSE sessions keyed by session id.

The registry is the router's only shared mutable state. All mutation runs on
the event loop thread, so admit/remove/clear are serialized without locks;
admit() checks capacity and inserts with no await in between.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator

from transport.sse import SseServerTransport

logger = logging.getLogger(__name__)


class StreamSessionRegistry:
    """Open streaming sessions, bounded by a maximum count."""

    def __init__(self, max_sessions: int) -> None:
        self.max_sessions = max_sessions
        self._sessions: dict[str, SseServerTransport] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))

    @property
    def size(self) -> int:
        return len(self._sessions)

    @property
    def is_full(self) -> bool:
        return len(self._sessions) >= self.max_sessions

    def admit(self, transport: SseServerTransport) -> bool:
        """Insert a transport if below capacity. Returns False when full."""
        if self.is_full:
            return False
        if transport.session_id is None or transport.session_id in self._sessions:
            raise ValueError(f"Session id {transport.session_id!r} is not unique")
        self._sessions[transport.session_id] = transport
        return True

    def get(self, session_id: str) -> SseServerTransport | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> SseServerTransport | None:
        """Remove a session. Removing an absent id is a no-op."""
        return self._sessions.pop(session_id, None)

    async def close_all(self) -> None:
        """Close every open session, then clear.

        Best effort: every close is attempted and the registry is cleared even
        if some closes fail.
        """
        transports = list(self._sessions.values())
        if transports:
            logger.info(f"Closing {len(transports)} SSE sessions")

        results = await asyncio.gather(
            *(transport.close() for transport in transports), return_exceptions=True
        )
        for transport, result in zip(transports, results):
            if isinstance(result, BaseException):
                logger.error(f"Failed to close SSE session {transport.session_id}: {result}")

        self._sessions.clear()
