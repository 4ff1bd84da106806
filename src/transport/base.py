"""
Transport base class shared by the stdio and SSE transports.

A transport is a bidirectional JSON-RPC channel that a protocol engine
connects to. Lifecycle is two-state (open -> closed): close() is idempotent
and close callbacks fire exactly once, after which the transport rejects sends.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from models.transport_models import SessionState

logger = logging.getLogger(__name__)

JSONMessage = dict[str, Any]
MessageHandler = Callable[[JSONMessage], Awaitable[None]]
CloseCallback = Callable[[], Any]
ErrorCallback = Callable[[BaseException], Any]


class TransportClosedError(ConnectionError):
    """Raised when sending on a transport that has already closed."""


class Transport(ABC):
    """Base class for transports connectable to the protocol engine."""

    def __init__(self, session_id: str | None = None) -> None:
        self.session_id = session_id
        self.state = SessionState.OPEN
        self.message_handler: MessageHandler | None = None
        self._close_callbacks: list[CloseCallback] = []
        self._error_callbacks: list[ErrorCallback] = []
        self._closed = asyncio.Event()

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def on_close(self, callback: CloseCallback) -> None:
        """Register a callback fired once when the transport closes."""
        self._close_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        """Register a callback fired for each error the transport observes."""
        self._error_callbacks.append(callback)

    @abstractmethod
    async def start(self) -> None:
        """Begin carrying messages. Called by the engine on connect."""

    @abstractmethod
    async def send(self, message: JSONMessage) -> None:
        """Deliver one outbound message to the peer."""

    async def _teardown(self) -> None:
        """Release transport-specific resources. Runs once, before close callbacks."""

    async def close(self) -> None:
        """Close the transport. Redundant calls are no-ops."""
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self._closed.set()

        try:
            await self._teardown()
        finally:
            for callback in self._close_callbacks:
                await self._invoke(callback)

    async def wait_closed(self) -> None:
        """Wait until the transport has closed."""
        await self._closed.wait()

    async def report_error(self, error: BaseException) -> None:
        """Surface an error to the registered error callbacks without closing."""
        if not self._error_callbacks:
            logger.warning(f"Unhandled transport error [{self.session_id}]: {error}")
        for callback in self._error_callbacks:
            await self._invoke(callback, error)

    async def dispatch(self, message: JSONMessage) -> None:
        """Hand an inbound message to the connected engine."""
        if self.message_handler is None:
            raise TransportClosedError("Transport is not connected to an engine")
        await self.message_handler(message)

    async def _invoke(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Transport callback failed [{self.session_id}]")
