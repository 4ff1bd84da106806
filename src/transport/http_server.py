"""
HTTP Router for the session router.

Provides:
- GET /sse: open a streaming session (when SSE is enabled)
- POST /message?sessionId=ID: deliver a message to an open session
- GET /health: liveness and capacity report
- OPTIONS *: CORS preflight (answered by the security gate)

Every request passes the security gate first. Unmatched paths get 404,
unsupported methods on known paths get 405.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.config import TransportConfig
from models.transport_models import HealthReport
from transport.security import SecurityGate, SecurityGateMiddleware
from transport.session_registry import StreamSessionRegistry
from transport.sse import SseServerTransport

if TYPE_CHECKING:
    from core.engine import ProtocolEngine

logger = logging.getLogger(__name__)


class ErrorGuardMiddleware:
    """Outermost layer: log unexpected failures, answer 500 if nothing was sent yet."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def guarded_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, guarded_send)
        except Exception:
            logger.exception(f"Request error: {scope.get('method')} {scope.get('path')}")
            if not response_started:
                response = PlainTextResponse("Internal Server Error", status_code=500)
                await response(scope, receive, send)


class HTTPTransportRouter:
    """Builds the FastAPI application that fronts the streaming sessions."""

    def __init__(
        self,
        engine: ProtocolEngine,
        security_gate: SecurityGate,
        registry: StreamSessionRegistry,
        config: TransportConfig,
    ) -> None:
        self.engine = engine
        self.security_gate = security_gate
        self.registry = registry
        self.config = config

    def create_app(self) -> FastAPI:
        """Create the FastAPI application with session routing endpoints."""
        app = FastAPI(
            title="MCP Session Router",
            description="HTTP/SSE transport for MCP",
            version="1.0.0",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
            redirect_slashes=False,
        )

        # Added last runs first: error guard wraps the security gate
        app.add_middleware(SecurityGateMiddleware, gate=self.security_gate)
        app.add_middleware(ErrorGuardMiddleware)

        if self.config.support_sse:
            self._add_sse_endpoint(app)
        self._add_message_endpoint(app)
        self._add_health_endpoint(app)

        return app

    def _add_sse_endpoint(self, app: FastAPI) -> None:
        """Add the SSE session-open endpoint."""

        @app.get("/sse")
        async def open_sse_session() -> Response:
            return await self.open_session()

    async def open_session(self) -> Response:
        """Admit a new SSE session and connect it to the engine."""
        transport = SseServerTransport(
            self.config.message_path, max_message_bytes=self.config.max_message_bytes
        )
        if not self.registry.admit(transport):
            logger.warning(
                f"Rejected SSE connection: limit of {self.registry.max_sessions} reached"
            )
            return PlainTextResponse("Connection limit reached", status_code=503)

        session_id = transport.session_id
        transport.on_close(lambda: self._on_session_closed(session_id))
        transport.on_error(lambda error: self._on_session_error(session_id, error))
        logger.info(f"New SSE connection established: {session_id}")

        try:
            await self.engine.connect(transport)
        except Exception:
            await transport.close()
            raise

        return transport.streaming_response()

    def _on_session_closed(self, session_id: str) -> None:
        logger.info(f"SSE connection closed: {session_id}")
        self.registry.remove(session_id)

    def _on_session_error(self, session_id: str, error: BaseException) -> None:
        logger.error(f"SSE transport error [{session_id}]: {error}")

    def _add_message_endpoint(self, app: FastAPI) -> None:
        """Add the endpoint that forwards POSTed messages into open sessions."""

        @app.post(self.config.message_path)
        async def post_message(request: Request) -> Response:
            session_id = request.query_params.get("sessionId")
            if not session_id:
                return PlainTextResponse("Missing sessionId", status_code=400)

            transport = self.registry.get(session_id)
            if transport is None:
                return PlainTextResponse("Session not found", status_code=404)

            return await transport.handle_post_message(request)

    def _add_health_endpoint(self, app: FastAPI) -> None:
        """Add health check endpoint."""

        @app.get("/health")
        async def health_check() -> dict[str, Any]:
            report = HealthReport(active_connections=len(self.registry))
            return report.model_dump(by_alias=True)
