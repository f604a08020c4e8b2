"""Utility module for configuration and retry decisions."""

from .config import (
    ExportConfig,
    ProtocolConfig,
    RateLimitConfig,
    RetryConfig,
    ServerConfig,
    SessionConfig,
    Settings,
)
from .resilience import TRANSIENT_REASONS, DisconnectReason, RetryPolicy

__all__ = [
    "Settings",
    "ServerConfig",
    "RateLimitConfig",
    "SessionConfig",
    "RetryConfig",
    "ExportConfig",
    "ProtocolConfig",
    "DisconnectReason",
    "RetryPolicy",
    "TRANSIENT_REASONS",
]
