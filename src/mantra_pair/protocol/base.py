from __future__ import annotations

import enum
import typing as t
from abc import ABC, abstractmethod
from dataclasses import dataclass


class UpdateKind(str, enum.Enum):
    CONNECTING = "connecting"
    QR = "qr"
    OPEN = "open"
    CLOSE = "close"
    CREDS_UPDATED = "creds_updated"


@dataclass(frozen=True)
class ConnectionUpdate:
    kind: UpdateKind
    qr: t.Optional[str] = None
    reason: t.Optional[int] = None
    message: t.Optional[str] = None


class Connection(ABC):
    """One live protocol connection. Owned by exactly one pairing session."""

    @abstractmethod
    def events(self) -> t.AsyncIterator[ConnectionUpdate]:  # pragma: no cover - interface
        """Connection updates in emission order; finishes once the connection ends."""
        raise NotImplementedError

    @property
    @abstractmethod
    def user_id(self) -> t.Optional[str]:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    async def request_pairing_code(self, phone: str) -> str:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    async def send_text(self, jid: str, text: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    async def end(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class Connector(ABC):
    @abstractmethod
    async def open(self, session_dir: str, *, use_pairing_code: bool) -> Connection:  # pragma: no cover - interface
        """Open a connection whose credential material is written under `session_dir`."""
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def self_jid(user_id: t.Optional[str]) -> t.Optional[str]:
    """Map a connection's own id (``"<number>:<device>@s.whatsapp.net"``) to its chat JID."""
    left = (user_id or "").split("@")[0]
    number = left.split(":")[0].strip()
    if not number:
        return None
    return f"{number}@s.whatsapp.net"
