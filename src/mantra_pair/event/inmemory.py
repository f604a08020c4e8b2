from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional, Set

from .types import SessionEvent

_logger = logging.getLogger(__name__)


class Subscription:
    """One listener's view of a session's events."""

    def __init__(self, bus: "SessionEventBus") -> None:
        self._bus = bus
        self._queue: "asyncio.Queue[Optional[SessionEvent]]" = asyncio.Queue()
        self.closed = False

    def _deliver(self, event: Optional[SessionEvent]) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    async def get(self, timeout: Optional[float] = None) -> Optional[SessionEvent]:
        """Next event, or None once the bus closed. Raises asyncio.TimeoutError on timeout."""
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    def get_nowait(self) -> Optional[SessionEvent]:
        """Next queued event without waiting. Raises asyncio.QueueEmpty."""
        return self._queue.get_nowait()

    def unsubscribe(self) -> None:
        self.closed = True
        self._bus._subscribers.discard(self)

    async def __aiter__(self) -> AsyncIterator[SessionEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class SessionEventBus:
    """In-process fan-out of one session's events to any number of subscribers."""

    def __init__(self, session_id: str) -> None:
        self._session_id = session_id
        self._subscribers: Set[Subscription] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(self)
        if self._closed:
            sub._deliver(None)
        else:
            self._subscribers.add(sub)
        return sub

    def publish(self, event: SessionEvent) -> None:
        if self._closed:
            _logger.debug("Dropping %s for closed session %s", event.name.value, self._session_id)
            return
        for sub in list(self._subscribers):
            sub._deliver(event)

    def close(self) -> None:
        """Deliver end-of-stream to every subscriber; later publishes are dropped."""
        if self._closed:
            return
        self._closed = True
        for sub in list(self._subscribers):
            sub._deliver(None)
        self._subscribers.clear()
