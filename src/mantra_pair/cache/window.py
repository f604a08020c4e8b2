from __future__ import annotations

import time
import typing as t
from collections import OrderedDict


class WindowCounter:
    """Fixed-window hit counter per key, LRU-bounded.

    No external deps; one instance per process is enough for rate limiting.
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        max_keys: int = 10000,
        clock: t.Callable[[], float] = time.monotonic,
    ) -> None:
        self._store: "OrderedDict[str, tuple[float, int]]" = OrderedDict()
        self._window = window_seconds
        self._max_keys = max_keys
        self._clock = clock

    def hit(self, key: str) -> t.Tuple[int, float]:
        """Count one hit; returns (hits in current window, seconds until reset)."""
        now = self._clock()
        item = self._store.get(key)
        if item is None or item[0] <= now:
            resets_at, count = now + self._window, 0
        else:
            resets_at, count = item
        count += 1
        self._store[key] = (resets_at, count)
        # mark as recently used
        self._store.move_to_end(key)
        if len(self._store) > self._max_keys:
            # evict LRU
            self._store.popitem(last=False)
        return count, resets_at - now

    def reset(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()
