from __future__ import annotations

import enum
import time
import typing as t
from dataclasses import dataclass, field


class EventName(str, enum.Enum):
    STATUS = "status"
    CODE = "code"
    QR = "qr"
    CONNECTED = "connected"
    EXPORTED = "exported"
    ERROR = "error"
    PING = "ping"


EventData = t.Dict[str, t.Any]


@dataclass(frozen=True)
class SessionEvent:
    name: EventName
    data: EventData = field(default_factory=dict)
    timestamp: float = field(default_factory=lambda: time.time())

    @classmethod
    def status(cls, status: str, **extra: t.Any) -> "SessionEvent":
        return cls(EventName.STATUS, {"status": status, **extra})

    @classmethod
    def code(cls, code: str, expires_in: int) -> "SessionEvent":
        return cls(EventName.CODE, {"code": code, "expiresIn": expires_in})

    @classmethod
    def qr(cls, data_url: str) -> "SessionEvent":
        return cls(EventName.QR, {"qr": data_url})

    @classmethod
    def error(cls, message: str) -> "SessionEvent":
        return cls(EventName.ERROR, {"message": message})

