"""mantra_pair

Pairs a web client with a WhatsApp account through a protocol sidecar and
sends the resulting session credentials back to the account's own chat.
Pairing sessions are short-lived, retried on transient disconnects and
streamed to the browser as server-sent events.
"""

from .core.clock import AsyncioClock, Clock, ManualClock
from .core.exporter import CredentialExporter, decrypt_token
from .core.models import PairingMethod, PairingRequest, SessionStatus
from .core.registry import SessionRegistry
from .core.session import PairingSession
from .errors import (
    AuthError,
    ConfigError,
    MantraPairError,
    NotFoundError,
    PayloadTooLargeError,
    ProtocolError,
    ResourceError,
    TerminalProtocolError,
    TokenError,
    TransientProtocolError,
    ValidationError,
)
from .event import EventName, SessionEvent, SessionEventBus
from .protocol import BridgeConnector, Connection, ConnectionUpdate, Connector, UpdateKind
from .utils import DisconnectReason, RetryPolicy, Settings

__all__ = [
    "SessionRegistry",
    "PairingSession",
    "PairingMethod",
    "PairingRequest",
    "SessionStatus",
    "CredentialExporter",
    "decrypt_token",
    "Clock",
    "AsyncioClock",
    "ManualClock",
    "EventName",
    "SessionEvent",
    "SessionEventBus",
    "Connector",
    "Connection",
    "ConnectionUpdate",
    "UpdateKind",
    "BridgeConnector",
    "RetryPolicy",
    "DisconnectReason",
    "Settings",
    "MantraPairError",
    "ConfigError",
    "ValidationError",
    "AuthError",
    "NotFoundError",
    "PayloadTooLargeError",
    "ProtocolError",
    "TransientProtocolError",
    "TerminalProtocolError",
    "ResourceError",
    "TokenError",
]

__version__ = "0.1.0"
