"""
Transport Data Models.

Pydantic models and enums shared by the transports, the security gate and
the HTTP router.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ===== ENUMS =====

class SessionState(str, Enum):
    """Transport lifecycle state."""
    OPEN = "open"
    CLOSED = "closed"


class SecuritySeverity(str, Enum):
    """Security event severity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ===== SECURITY VERDICTS =====

class HeaderValidationResult(BaseModel):
    """Outcome of validating a request's header set."""
    valid: bool
    errors: List[str] = Field(default_factory=list)


class RateLimitResult(BaseModel):
    """Outcome of a rate-limit check for one client."""
    allowed: bool
    remaining: Optional[int] = None
    retry_after: Optional[float] = Field(
        None, description="Seconds until the client regains budget"
    )


# ===== HTTP RESPONSES =====

class HealthReport(BaseModel):
    """Body of the /health response."""
    model_config = ConfigDict(populate_by_name=True)

    status: str = "healthy"
    active_connections: int = Field(0, alias="activeConnections")
