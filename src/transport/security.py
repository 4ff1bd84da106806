"""
Security gate for the HTTP transport.

Every inbound request passes, in order:
1. Header validation (403 on failure, logged as a security event)
2. Rate limiting keyed by peer address (429 on failure)
3. CORS preflight (OPTIONS answered with 204, never routed)

The gate policy is pluggable through the SecurityGate protocol; the
DefaultSecurityGate provides header sanity checks, an Origin allow-list
and a moving-window rate limiter backed by `limits`.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from models.transport_models import HeaderValidationResult, RateLimitResult, SecuritySeverity

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")

T = TypeVar("T")

CORS_PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

_SEVERITY_LEVELS = {
    SecuritySeverity.LOW: logging.INFO,
    SecuritySeverity.MEDIUM: logging.WARNING,
    SecuritySeverity.HIGH: logging.ERROR,
    SecuritySeverity.CRITICAL: logging.ERROR,
}


class SecurityGate(Protocol):
    """Admission policy consulted for every HTTP request.

    The two verdict methods may be plain or async.
    """

    def validate_request_headers(
        self, headers: Mapping[str, str]
    ) -> HeaderValidationResult | Awaitable[HeaderValidationResult]: ...

    def check_rate_limit(
        self, client_id: str
    ) -> RateLimitResult | Awaitable[RateLimitResult]: ...

    def log_security_event(
        self, event_type: str, details: dict[str, Any], severity: SecuritySeverity
    ) -> None: ...


async def resolve(result: T | Awaitable[T]) -> T:
    """Await a verdict if the gate returned an awaitable."""
    if inspect.isawaitable(result):
        return await result
    return result


@dataclass
class SecurityConfig:
    """Security configuration for the default gate."""

    allowed_origins: list[str] = field(default_factory=list)
    max_header_count: int = 100
    max_header_bytes: int = 16 * 1024
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 60

    def __post_init__(self) -> None:
        if not self.allowed_origins:
            self.allowed_origins = [
                "http://localhost",
                "http://127.0.0.1",
                "https://localhost",
                "https://127.0.0.1",
                "null",  # For file:// origins
            ]


def validate_origin(origin: str | None, allowed_origins: list[str]) -> bool:
    """Validate an Origin header value against the allowed list."""
    if not origin:
        return True  # No origin header (same-origin or non-browser client)

    for allowed in allowed_origins:
        if origin.startswith(allowed):
            return True

    return False


class DefaultSecurityGate:
    """Header sanity checks, Origin allow-list and a per-client moving window."""

    def __init__(self, config: SecurityConfig | None = None) -> None:
        self.config = config or SecurityConfig()
        self._limiter = MovingWindowRateLimiter(MemoryStorage())
        self._limit = RateLimitItemPerSecond(
            self.config.rate_limit_requests, self.config.rate_limit_window_seconds
        )

    def validate_request_headers(self, headers: Mapping[str, str]) -> HeaderValidationResult:
        errors: list[str] = []
        items = list(headers.items())

        if len(items) > self.config.max_header_count:
            errors.append(f"Too many headers: {len(items)} > {self.config.max_header_count}")

        total_bytes = sum(len(k) + len(v) for k, v in items)
        if total_bytes > self.config.max_header_bytes:
            errors.append(f"Headers too large: {total_bytes} > {self.config.max_header_bytes} bytes")

        for name, value in items:
            if any(c in value for c in ("\x00", "\r", "\n")):
                errors.append(f"Invalid characters in header: {name}")

        origin = headers.get("origin")
        if not validate_origin(origin, self.config.allowed_origins):
            errors.append(f"Origin not allowed: {origin}")

        return HeaderValidationResult(valid=not errors, errors=errors)

    def check_rate_limit(self, client_id: str) -> RateLimitResult:
        allowed = self._limiter.hit(self._limit, client_id)
        stats = self._limiter.get_window_stats(self._limit, client_id)

        if not allowed:
            retry_after = max(stats.reset_time - time.time(), 0.0)
            return RateLimitResult(allowed=False, remaining=0, retry_after=retry_after)

        return RateLimitResult(allowed=True, remaining=stats.remaining)

    def log_security_event(
        self, event_type: str, details: dict[str, Any], severity: SecuritySeverity
    ) -> None:
        severity = SecuritySeverity(severity)
        security_logger.log(
            _SEVERITY_LEVELS[severity], f"Security event {event_type} [{severity.value}]: {details}"
        )


class SecurityGateMiddleware(BaseHTTPMiddleware):
    """Runs header validation, rate limiting and CORS preflight before routing."""

    def __init__(self, app: ASGIApp, gate: SecurityGate) -> None:
        super().__init__(app)
        self.gate = gate

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        client_id = request.client.host if request.client else "unknown"
        user_agent = request.headers.get("user-agent", "unknown")

        validation = await resolve(self.gate.validate_request_headers(request.headers))
        if not validation.valid:
            self.gate.log_security_event(
                "suspicious_headers",
                {"clientIp": client_id, "userAgent": user_agent, "errors": validation.errors},
                SecuritySeverity.MEDIUM,
            )
            return Response(content="Forbidden", status_code=403, media_type="text/plain")

        rate_limit = await resolve(self.gate.check_rate_limit(client_id))
        if not rate_limit.allowed:
            headers = {}
            if rate_limit.retry_after is not None:
                headers["Retry-After"] = str(max(1, round(rate_limit.retry_after)))
            return Response(
                content="Too Many Requests",
                status_code=429,
                media_type="text/plain",
                headers=headers,
            )

        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_PREFLIGHT_HEADERS)

        return await call_next(request)
