from __future__ import annotations

import typing as t


class MantraPairError(Exception):
    """Base class for every error raised by mantra_pair."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: t.Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> t.Dict[str, t.Any]:
        return {"ok": False, "error": self.message}


class ConfigError(MantraPairError):
    pass


class ValidationError(MantraPairError):
    status_code = 400


class AuthError(MantraPairError):
    status_code = 401


class NotFoundError(MantraPairError):
    status_code = 404


class ProtocolError(MantraPairError):
    """Failure reported by the messaging protocol layer.

    `reason` is the protocol's machine-readable disconnect code, if any.
    """

    def __init__(self, message: str, *, reason: t.Optional[int] = None) -> None:
        super().__init__(message)
        self.reason = reason


class TransientProtocolError(ProtocolError):
    """Worth retrying on a fresh connection (transport hiccup, sidecar restart)."""


class TerminalProtocolError(ProtocolError):
    pass


class ResourceError(MantraPairError):
    """Local filesystem failure while preparing or reading session storage."""


class TokenError(MantraPairError):
    """An exported token could not be decoded or decrypted."""


class PayloadTooLargeError(MantraPairError):
    status_code = 413

    def __init__(self, message: str = "Request body too large") -> None:
        super().__init__(message)
