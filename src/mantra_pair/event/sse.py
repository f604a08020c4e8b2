from __future__ import annotations

import asyncio
import json
import typing as t

from .types import EventData, EventName, SessionEvent

if t.TYPE_CHECKING:
    from mantra_pair.core.session import PairingSession

DEFAULT_KEEPALIVE_SECONDS = 15.0


def encode_event(name: t.Union[EventName, str], data: EventData) -> bytes:
    event = name.value if isinstance(name, EventName) else name
    payload = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    return f"event: {event}\ndata: {payload}\n\n".encode()


async def stream_events(
    session: "PairingSession",
    *,
    keepalive_seconds: float = DEFAULT_KEEPALIVE_SECONDS,
) -> t.AsyncIterator[bytes]:
    """Replay the session's current state, then forward its events as SSE frames.

    Ends when the session is cleaned up. Closing the generator (client gone)
    only drops this subscription; the session carries on.
    """
    sub = session.events.subscribe()
    try:
        for event in session.snapshot_events():
            yield encode_event(event.name, event.data)
        while True:
            try:
                next_event: t.Optional[SessionEvent] = await sub.get(timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield encode_event(EventName.PING, {})
                continue
            if next_event is None:
                return
            yield encode_event(next_event.name, next_event.data)
    finally:
        sub.unsubscribe()
