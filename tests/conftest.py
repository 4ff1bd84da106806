"""
Shared pytest fixtures for session router tests.

This module provides common fixtures used across the test modules:
- Fake protocol engine and security gate that record their calls
- Transport configuration, manager and in-process HTTP client
- Helpers for opening SSE sessions and waiting on async conditions
"""

import asyncio
import os
import sys
from pathlib import Path
from typing import Any, AsyncGenerator, Awaitable, Callable, Generator

import httpx
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from core.config import TransportConfig  # noqa: E402
from models.transport_models import (  # noqa: E402
    HeaderValidationResult,
    RateLimitResult,
    SecuritySeverity,
)
from transport.manager import TransportManager  # noqa: E402


# ============================================================================
# Collaborator Fakes
# ============================================================================

class FakeEngine:
    """Protocol engine that records connected transports and inbound messages."""

    def __init__(self) -> None:
        self.transports: list[Any] = []
        self.messages: list[tuple[str | None, dict[str, Any]]] = []
        self.fail_with: Exception | None = None

    async def connect(self, transport: Any) -> None:
        if self.fail_with is not None:
            raise self.fail_with

        async def handle(message: dict[str, Any]) -> None:
            self.messages.append((transport.session_id, message))

        transport.message_handler = handle
        self.transports.append(transport)
        await transport.start()


class FakeSecurityGate:
    """Security gate with switchable verdicts that records call order."""

    def __init__(self) -> None:
        self.headers_valid = True
        self.rate_allowed = True
        self.retry_after: float | None = None
        self.calls: list[str] = []
        self.events: list[tuple[str, dict[str, Any], SecuritySeverity]] = []

    def validate_request_headers(self, headers: Any) -> HeaderValidationResult:
        self.calls.append("headers")
        if self.headers_valid:
            return HeaderValidationResult(valid=True)
        return HeaderValidationResult(valid=False, errors=["suspicious header"])

    def check_rate_limit(self, client_id: str) -> RateLimitResult:
        self.calls.append("rate_limit")
        return RateLimitResult(allowed=self.rate_allowed, retry_after=self.retry_after)

    def log_security_event(
        self, event_type: str, details: dict[str, Any], severity: SecuritySeverity
    ) -> None:
        self.events.append((event_type, details, severity))


# ============================================================================
# Collaborator Fixtures
# ============================================================================

@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def gate() -> FakeSecurityGate:
    return FakeSecurityGate()


# ============================================================================
# Manager and HTTP Client Fixtures
# ============================================================================

@pytest.fixture
def transport_config() -> TransportConfig:
    """SSE-enabled configuration with a small session ceiling."""
    return TransportConfig(support_stdio=False, support_sse=True, max_connections=2)


@pytest.fixture
async def manager(
    engine: FakeEngine, gate: FakeSecurityGate, transport_config: TransportConfig
) -> AsyncGenerator[TransportManager, None]:
    manager = TransportManager(engine, gate, transport_config)
    yield manager
    await manager.shutdown()


@pytest.fixture
async def client(manager: TransportManager) -> AsyncGenerator[httpx.AsyncClient, None]:
    """In-process client for the router's ASGI app."""
    app = manager.router.create_app()
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        yield client


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a predicate on the event loop until it holds."""

    async def _wait(predicate: Callable[[], Any], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait


@pytest.fixture
async def open_stream(
    client: httpx.AsyncClient,
    engine: FakeEngine,
    wait_until: Callable[..., Awaitable[None]],
) -> AsyncGenerator[Callable[[], Awaitable[tuple[Any, asyncio.Task]]], None]:
    """Open an SSE session; returns (transport, response task).

    The response task finishes once the session closes. Pending streams are
    closed at teardown.
    """
    tasks: list[asyncio.Task] = []

    async def _open() -> tuple[Any, asyncio.Task]:
        before = len(engine.transports)
        task = asyncio.create_task(client.get("/sse"))
        tasks.append(task)
        await wait_until(lambda: len(engine.transports) > before or task.done())
        transport = engine.transports[-1] if len(engine.transports) > before else None
        return transport, task

    yield _open

    for transport in engine.transports:
        await transport.close()
    if tasks:
        await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout=5)


# ============================================================================
# Environment Fixtures
# ============================================================================

@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Provide an environment without MCP_* transport variables."""
    original_env = os.environ.copy()

    for key in [k for k in os.environ if k.startswith("MCP_")]:
        del os.environ[key]

    yield

    os.environ.clear()
    os.environ.update(original_env)
