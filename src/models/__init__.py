"""
Session Router Models - Data structures shared across transports.

This module contains the Pydantic models used by the session router to
represent lifecycle state, security verdicts and health reports.
"""

from .transport_models import (
    HeaderValidationResult,
    HealthReport,
    RateLimitResult,
    SecuritySeverity,
    SessionState,
)

__all__ = [
    "HeaderValidationResult",
    "HealthReport",
    "RateLimitResult",
    "SecuritySeverity",
    "SessionState",
]
