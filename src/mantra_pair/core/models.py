from __future__ import annotations

import enum
import re
import typing as t
from dataclasses import dataclass

from mantra_pair.errors import ValidationError


class SessionStatus(str, enum.Enum):
    CREATED = "created"
    STARTING = "starting"
    REQUESTING_CODE = "requesting_code"
    WAITING_QR = "waiting_qr"
    RETRYING = "retrying"
    CONNECTED = "connected"
    EXPORTED = "exported"
    TERMINATED = "terminated"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.TERMINATED, SessionStatus.FAILED)


class PairingMethod(str, enum.Enum):
    CODE = "code"
    QR = "qr"


_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: t.Any) -> str:
    """Strip everything but digits and require 10-15 of them."""
    cleaned = _NON_DIGITS.sub("", "" if phone is None else str(phone))
    if len(cleaned) < 10 or len(cleaned) > 15:
        raise ValidationError("Phone number must be 10-15 digits")
    return cleaned


@dataclass(frozen=True)
class PairingRequest:
    method: PairingMethod
    phone: t.Optional[str] = None

    @classmethod
    def parse(cls, method: t.Any, phone: t.Any = None) -> "PairingRequest":
        try:
            parsed = PairingMethod(str(method or "code"))
        except ValueError:
            raise ValidationError('Invalid method. Use "code" or "qr".') from None
        if parsed is PairingMethod.CODE:
            return cls(parsed, normalize_phone(phone))
        return cls(parsed, None)


def format_pairing_code(code: t.Optional[str], block: int = 4) -> t.Optional[str]:
    if not code:
        return code
    return "-".join(code[i : i + block] for i in range(0, len(code), block))
