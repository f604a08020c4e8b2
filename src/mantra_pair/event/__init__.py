from .inmemory import SessionEventBus, Subscription
from .sse import encode_event, stream_events
from .types import EventData, EventName, SessionEvent

__all__ = [
    "EventName",
    "EventData",
    "SessionEvent",
    "SessionEventBus",
    "Subscription",
    "encode_event",
    "stream_events",
]
