"""
Transport configuration for the session router.

Supports configuration via:
- Environment variables
- Explicit keyword overrides (e.g. from the command line)

Precedence: explicit overrides > environment > defaults.

Environment Variables:
    MCP_HTTP_PORT: HTTP listen port (default: 3000)
    MCP_HTTP_HOST: HTTP listen host (default: 127.0.0.1)
    MCP_MAX_CONNECTIONS: Maximum simultaneous streaming sessions (default: 10)
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_HTTP_PORT = 3000
DEFAULT_HTTP_HOST = "127.0.0.1"
DEFAULT_MAX_CONNECTIONS = 10
DEFAULT_MESSAGE_PATH = "/message"
DEFAULT_MAX_MESSAGE_BYTES = 4 * 1024 * 1024


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class TransportConfig:
    """Immutable transport configuration, read once at startup."""

    # Transport selection
    support_stdio: bool = True
    support_http: bool = False
    support_sse: bool = False

    # HTTP listener
    http_host: str = DEFAULT_HTTP_HOST
    http_port: int = DEFAULT_HTTP_PORT
    max_connections: int = DEFAULT_MAX_CONNECTIONS

    # Streaming sessions
    message_path: str = DEFAULT_MESSAGE_PATH
    max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES

    # Socket tuning and shutdown
    idle_timeout_seconds: int = 30
    graceful_shutdown_seconds: int = 5

    @property
    def http_enabled(self) -> bool:
        return self.support_http or self.support_sse

    @classmethod
    def from_env(cls) -> TransportConfig:
        """Create configuration from environment variables."""
        values: dict[str, Any] = {}

        if (port := _env_int("MCP_HTTP_PORT")) is not None:
            values["http_port"] = port
        if host := os.environ.get("MCP_HTTP_HOST"):
            values["http_host"] = host
        if (max_connections := _env_int("MCP_MAX_CONNECTIONS")) is not None:
            values["max_connections"] = max_connections

        return cls(**values)

    @classmethod
    def load(cls, **overrides: Any) -> TransportConfig:
        """Load configuration with precedence: explicit > env > defaults."""
        config = cls.from_env()

        field_names = {f.name for f in dataclasses.fields(cls)}
        unknown = set(overrides) - field_names
        if unknown:
            raise TypeError(f"Unknown transport config fields: {', '.join(sorted(unknown))}")

        # None means "not given" so CLI defaults don't mask the environment
        explicit = {k: v for k, v in overrides.items() if v is not None}
        if explicit:
            config = dataclasses.replace(config, **explicit)

        if config.max_connections < 1:
            logger.warning(
                f"max_connections={config.max_connections} admits no streaming sessions"
            )

        return config
