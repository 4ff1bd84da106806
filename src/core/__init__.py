"""
Core configuration and protocol engine bridge for the session router.

This module contains the transport configuration and the contract through
which transports are handed to the MCP protocol engine.
"""

from .config import TransportConfig

__all__ = ["TransportConfig"]
