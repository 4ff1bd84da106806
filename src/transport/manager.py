"""
Transport manager: starts and stops the stdio and HTTP/SSE transports.

Startup order is fixed: stdio first (connected straight to the protocol
engine), then the HTTP listener. A failure in either aborts startup with
TransportStartError; nothing is retried.

Shutdown closes every open SSE session, clears the registry, then stops
the HTTP listener. The stdio channel belongs to the surrounding process
and is left alone.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import weakref
from collections.abc import Callable
from typing import TYPE_CHECKING

import uvicorn
from uvicorn.protocols.http.h11_impl import H11Protocol

from core.config import TransportConfig
from transport.base import Transport
from transport.http_server import HTTPTransportRouter
from transport.security import SecurityGate
from transport.session_registry import StreamSessionRegistry
from transport.stdio import StdioTransport

if TYPE_CHECKING:
    from core.engine import ProtocolEngine

logger = logging.getLogger(__name__)


class TransportStartError(Exception):
    """A transport failed to start. Fatal; the cause is chained."""

    def __init__(self, transport: str, cause: BaseException) -> None:
        super().__init__(f"Failed to start {transport} transport: {cause}")
        self.transport = transport
        self.cause = cause


def make_tuned_protocol(connections: weakref.WeakSet[asyncio.Protocol]) -> type[H11Protocol]:
    """Build an h11 protocol class that tunes each accepted socket."""

    class TunedH11Protocol(H11Protocol):
        def connection_made(self, transport: asyncio.BaseTransport) -> None:  # type: ignore[override]
            super().connection_made(transport)  # type: ignore[arg-type]
            sock = transport.get_extra_info("socket")
            if sock is not None and sock.family in (socket.AF_INET, socket.AF_INET6):
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            connections.add(self)

    return TunedH11Protocol


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind the listening socket up front so bind errors surface to the caller."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


class TransportManager:
    """Owns transport configuration, the session registry and the HTTP listener."""

    def __init__(
        self,
        engine: ProtocolEngine,
        security_gate: SecurityGate,
        config: TransportConfig | None = None,
        stdio_factory: Callable[[], Transport] = StdioTransport,
    ) -> None:
        self.engine = engine
        self.security_gate = security_gate
        self.config = config or TransportConfig.load()
        self.registry = StreamSessionRegistry(self.config.max_connections)
        self.router = HTTPTransportRouter(engine, security_gate, self.registry, self.config)

        self._stdio_factory = stdio_factory
        self._stdio_transport: Transport | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._bound_address: tuple[str, int] | None = None
        self._connections: weakref.WeakSet[asyncio.Protocol] = weakref.WeakSet()

    @property
    def active_session_count(self) -> int:
        return len(self.registry)

    @property
    def open_connection_count(self) -> int:
        return len(self._connections)

    @property
    def bound_address(self) -> tuple[str, int] | None:
        return self._bound_address

    @property
    def http_listening(self) -> bool:
        return (
            self._server is not None
            and self._server.started
            and self._serve_task is not None
            and not self._serve_task.done()
        )

    async def start_transport(self) -> None:
        """Start the configured transports: stdio first, then HTTP."""
        if self.config.support_stdio:
            try:
                await self._start_stdio_transport()
            except Exception as e:
                logger.error(f"Stdio transport failed to start: {e}")
                raise TransportStartError("stdio", e) from e

        if self.config.http_enabled:
            try:
                await self._start_http_transport()
            except Exception as e:
                logger.error(f"HTTP transport failed to start: {e}")
                raise TransportStartError("http", e) from e

    async def _start_stdio_transport(self) -> None:
        logger.info("Starting stdio transport")
        transport = self._stdio_factory()
        await self.engine.connect(transport)
        self._stdio_transport = transport
        logger.info("Stdio transport started successfully")

    async def _start_http_transport(self) -> None:
        host, port = self.config.http_host, self.config.http_port
        logger.info(f"Starting HTTP transport on {host}:{port}")

        sock = bind_socket(host, port)
        self._bound_address = sock.getsockname()[:2]

        config = uvicorn.Config(
            app=self.router.create_app(),
            http=make_tuned_protocol(self._connections),
            lifespan="off",
            log_config=None,
            access_log=False,
            timeout_keep_alive=self.config.idle_timeout_seconds,
            timeout_graceful_shutdown=self.config.graceful_shutdown_seconds,
        )
        server = uvicorn.Server(config)
        task = asyncio.create_task(server.serve(sockets=[sock]))

        while not server.started:
            if task.done():
                sock.close()
                if task.exception() is not None:
                    raise task.exception()  # type: ignore[misc]
                raise RuntimeError("HTTP server exited during startup")
            await asyncio.sleep(0.01)

        self._server = server
        self._serve_task = task
        bound_host, bound_port = self._bound_address
        logger.info(f"HTTP transport listening on {bound_host}:{bound_port}")

    async def wait_closed(self) -> None:
        """Wait until the HTTP listener stops or the stdio channel closes."""
        waiters: list[asyncio.Future[None]] = []
        if self._serve_task is not None:
            waiters.append(self._serve_task)
        if self._stdio_transport is not None:
            waiters.append(asyncio.ensure_future(self._stdio_transport.wait_closed()))
        if not waiters:
            return

        _, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for waiter in pending:
            if waiter is not self._serve_task:
                waiter.cancel()

    async def shutdown(self) -> None:
        """Close all SSE sessions, then the HTTP listener if one is running."""
        logger.info("Shutting down transports")
        await self.registry.close_all()

        if self._server is None or self._serve_task is None:
            return

        self._server.should_exit = True
        try:
            await self._serve_task
        except Exception as e:
            logger.error(f"HTTP transport stopped with error: {e}")
        finally:
            self._server = None
            self._serve_task = None
        logger.info("HTTP transport closed")
