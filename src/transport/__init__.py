"""Transport module for the MCP session router."""

from transport.base import Transport, TransportClosedError
from transport.http_server import HTTPTransportRouter
from transport.manager import TransportManager, TransportStartError
from transport.security import DefaultSecurityGate, SecurityConfig, SecurityGate
from transport.session_registry import StreamSessionRegistry
from transport.sse import SseServerTransport
from transport.stdio import StdioTransport

__all__ = [
    "DefaultSecurityGate",
    "HTTPTransportRouter",
    "SecurityConfig",
    "SecurityGate",
    "SseServerTransport",
    "StdioTransport",
    "StreamSessionRegistry",
    "Transport",
    "TransportClosedError",
    "TransportManager",
    "TransportStartError",
]
