"""Core module for pairing session lifecycle management."""

from .asgi_wrapper import ApiKeyGate, RateLimiter
from .clock import AsyncioClock, Clock, ManualClock, Timer
from .exporter import CredentialExporter, decrypt_token
from .models import PairingMethod, PairingRequest, SessionStatus
from .registry import SessionRegistry
from .session import PairingSession

__all__ = [
    # Session management
    "SessionRegistry",
    "PairingSession",
    # Credential export
    "CredentialExporter",
    "decrypt_token",
    # Time
    "Clock",
    "AsyncioClock",
    "ManualClock",
    "Timer",
    # HTTP gates
    "ApiKeyGate",
    "RateLimiter",
    # Models
    "PairingMethod",
    "PairingRequest",
    "SessionStatus",
]
