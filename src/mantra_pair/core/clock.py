"""Clock and timer abstraction.

Sessions never touch the event loop's time directly; they receive a `Clock`
so tests can drive virtual time with `ManualClock.advance()`.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
import typing as t

Callback = t.Callable[[], t.Any]


class Timer:
    """Handle for a scheduled callback."""

    def __init__(self, cancel: Callback) -> None:
        self._cancel = cancel
        self.cancelled = False

    def cancel(self) -> None:
        if not self.cancelled:
            self.cancelled = True
            self._cancel()


class Clock:
    def now(self) -> float:  # pragma: no cover - interface
        raise NotImplementedError

    async def sleep(self, seconds: float) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def call_later(self, seconds: float, callback: Callback) -> Timer:  # pragma: no cover - interface
        raise NotImplementedError


class AsyncioClock(Clock):
    """Wall clock backed by the running asyncio loop."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))

    def call_later(self, seconds: float, callback: Callback) -> Timer:
        handle = asyncio.get_running_loop().call_later(max(0.0, seconds), callback)
        return Timer(handle.cancel)


class ManualClock(Clock):
    """Virtual clock for tests; time only moves on `advance()`."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = start
        self._seq = itertools.count()
        self._queue: t.List[t.Tuple[float, int, Callback]] = []
        self._cancelled: t.Set[int] = set()

    def now(self) -> float:
        return self._now

    def call_later(self, seconds: float, callback: Callback) -> Timer:
        seq = next(self._seq)
        heapq.heappush(self._queue, (self._now + max(0.0, seconds), seq, callback))
        return Timer(lambda: self._cancelled.add(seq))

    async def sleep(self, seconds: float) -> None:
        future = asyncio.get_running_loop().create_future()

        def wake() -> None:
            if not future.done():
                future.set_result(None)

        timer = self.call_later(seconds, wake)
        try:
            await future
        finally:
            timer.cancel()

    @property
    def pending(self) -> int:
        return sum(1 for _, seq, _ in self._queue if seq not in self._cancelled)

    async def settle(self, rounds: int = 10) -> None:
        """Let ready tasks, and any worker-thread file I/O they wait on, run without moving time."""
        for _ in range(rounds):
            await asyncio.sleep(0)
            await asyncio.sleep(0.001)

    async def advance(self, seconds: float) -> None:
        """Move time forward, firing due callbacks in order and letting tasks react."""
        target = self._now + seconds
        await self.settle()
        while self._queue and self._queue[0][0] <= target:
            when, seq, callback = heapq.heappop(self._queue)
            if seq in self._cancelled:
                self._cancelled.discard(seq)
                continue
            self._now = max(self._now, when)
            callback()
            await self.settle()
        self._now = target
        await self.settle()
