"""
Server-Sent Events transport.

One instance wraps one accepted GET /sse connection. Server-to-client
messages are pushed as SSE events; client-to-server messages arrive as
separate POSTs to the message endpoint, tagged with this transport's
sessionId, and are handed to handle_post_message().

Wire format:
- first event: ``event: endpoint`` whose data is the URL to POST messages to
- every outbound JSON-RPC message: ``event: message`` with compact JSON data
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncGenerator

from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response, StreamingResponse

from core.config import DEFAULT_MAX_MESSAGE_BYTES
from transport.base import JSONMessage, Transport, TransportClosedError

logger = logging.getLogger(__name__)

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}

# Queued after the last event to end the stream
_END_OF_STREAM = object()


def format_sse_event(event: str, data: str) -> str:
    """Encode one SSE event."""
    return f"event: {event}\ndata: {data}\n\n"


class SseServerTransport(Transport):
    """Stream connection adapter for a single SSE session."""

    def __init__(
        self,
        endpoint: str,
        max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES,
    ) -> None:
        super().__init__(session_id=uuid.uuid4().hex)
        self.endpoint = endpoint
        self.max_message_bytes = max_message_bytes
        self._events: asyncio.Queue[object] = asyncio.Queue()
        self._started = False

    @property
    def endpoint_url(self) -> str:
        return f"{self.endpoint}?sessionId={self.session_id}"

    async def start(self) -> None:
        if self._started:
            raise RuntimeError(f"SSE transport {self.session_id} already started")
        self._started = True
        self._events.put_nowait(format_sse_event("endpoint", self.endpoint_url))

    async def send(self, message: JSONMessage) -> None:
        if self.is_closed:
            raise TransportClosedError(f"SSE session {self.session_id} is closed")
        data = json.dumps(message, separators=(",", ":"))
        self._events.put_nowait(format_sse_event("message", data))

    async def _teardown(self) -> None:
        self._events.put_nowait(_END_OF_STREAM)

    async def event_stream(self) -> AsyncGenerator[str, None]:
        """Yield queued events until the transport closes."""
        try:
            while True:
                event = await self._events.get()
                if event is _END_OF_STREAM:
                    break
                yield event
        finally:
            # Client went away or the stream was cancelled
            await self.close()

    def streaming_response(self) -> StreamingResponse:
        return StreamingResponse(
            self.event_stream(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    async def handle_post_message(self, request: Request) -> Response:
        """Accept one client-to-server message for this session."""
        if self.is_closed:
            return PlainTextResponse("Session not found", status_code=404)

        content_type = request.headers.get("content-type", "")
        if content_type.split(";")[0].strip().lower() != "application/json":
            error = ValueError(f"Unsupported content-type: {content_type or 'none'}")
            await self.report_error(error)
            return PlainTextResponse(str(error), status_code=400)

        body = bytearray()
        async for chunk in request.stream():
            body.extend(chunk)
            if len(body) > self.max_message_bytes:
                return PlainTextResponse("Message too large", status_code=413)

        try:
            message = json.loads(body)
            if not isinstance(message, dict):
                raise ValueError("JSON-RPC message must be an object")
            await self.dispatch(message)
        except Exception as e:
            await self.report_error(e)
            return PlainTextResponse("Invalid message", status_code=400)

        return PlainTextResponse("Accepted", status_code=202)
