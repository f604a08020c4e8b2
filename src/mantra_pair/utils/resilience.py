from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import FrozenSet, Optional


class DisconnectReason(enum.IntEnum):
    """Disconnect status codes reported by the WhatsApp protocol layer."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    TIMED_OUT = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


TRANSIENT_REASONS: FrozenSet[int] = frozenset(
    {
        DisconnectReason.CONNECTION_CLOSED,
        DisconnectReason.CONNECTION_LOST,
        DisconnectReason.TIMED_OUT,
        DisconnectReason.RESTART_REQUIRED,
        DisconnectReason.UNAVAILABLE_SERVICE,
    }
)


@dataclass(frozen=True)
class RetryPolicy:
    """Decides whether a failed connection attempt is retried and how long to wait.

    `attempt` is the 1-based number of the attempt that just failed.
    """

    max_retries: int = 3
    base_delay_seconds: float = 5.0
    max_delay_seconds: float = 30.0

    def should_retry(self, attempt: int, reason: Optional[int] = None) -> bool:
        if attempt >= self.max_retries:
            return False
        if reason is None:
            return True
        if reason == DisconnectReason.LOGGED_OUT:
            return False
        return reason in TRANSIENT_REASONS

    def backoff_delay(self, attempt: int) -> float:
        return min(self.max_delay_seconds, self.base_delay_seconds * max(1, attempt))
