"""Unit tests for the virtual clock used to drive session timers."""

import asyncio

import pytest

from mantra_pair.core.clock import AsyncioClock, ManualClock


class TestManualClockTimers:
    @pytest.mark.asyncio
    async def test_callbacks_fire_in_due_order(self):
        clock = ManualClock(start=0.0)
        fired = []
        clock.call_later(3, lambda: fired.append(("c", clock.now())))
        clock.call_later(1, lambda: fired.append(("a", clock.now())))
        clock.call_later(2, lambda: fired.append(("b", clock.now())))

        await clock.advance(2.5)
        assert fired == [("a", 1.0), ("b", 2.0)]
        assert clock.now() == 2.5

        await clock.advance(1)
        assert [name for name, _ in fired] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_cancelled_timer_never_fires(self):
        clock = ManualClock()
        fired = []
        timer = clock.call_later(1, lambda: fired.append(1))
        assert clock.pending == 1

        timer.cancel()
        timer.cancel()
        assert timer.cancelled
        assert clock.pending == 0

        await clock.advance(5)
        assert fired == []

    @pytest.mark.asyncio
    async def test_sleep_wakes_only_when_time_moves(self):
        clock = ManualClock()
        woke = asyncio.Event()

        async def sleeper():
            await clock.sleep(10)
            woke.set()

        task = asyncio.ensure_future(sleeper())
        await clock.advance(9.9)
        assert not woke.is_set()

        await clock.advance(0.1)
        assert woke.is_set()
        await task

    @pytest.mark.asyncio
    async def test_cancelled_sleep_releases_timer(self):
        clock = ManualClock()
        task = asyncio.ensure_future(clock.sleep(10))
        await clock.settle()
        assert clock.pending == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert clock.pending == 0


@pytest.mark.asyncio
async def test_asyncio_clock_call_later():
    clock = AsyncioClock()
    fired = asyncio.Event()
    clock.call_later(0.01, fired.set)
    await asyncio.wait_for(fired.wait(), 1.0)

    late = []
    timer = clock.call_later(0.01, lambda: late.append(1))
    timer.cancel()
    await asyncio.sleep(0.03)
    assert late == []
