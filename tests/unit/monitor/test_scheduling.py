"""
Unit tests for the asyncio-backed timer scheduler used in production.
"""

import asyncio

import pytest

from around_the_block.monitor.scheduling import AsyncioScheduler, system_clock


class TestAsyncioScheduler:
    @pytest.mark.asyncio
    async def test_callback_runs_after_delay(self):
        scheduler = AsyncioScheduler()
        fired = asyncio.Event()

        async def callback():
            fired.set()

        scheduler.call_later(10, callback)
        assert not fired.is_set()

        await asyncio.wait_for(fired.wait(), timeout=1)
        await asyncio.sleep(0.01)
        assert scheduler._tasks == set()

    @pytest.mark.asyncio
    async def test_delay_is_milliseconds(self):
        scheduler = AsyncioScheduler()
        loop = asyncio.get_running_loop()
        fired_at = []

        async def callback():
            fired_at.append(loop.time())

        started = loop.time()
        scheduler.call_later(50, callback)
        await asyncio.sleep(0.2)

        assert len(fired_at) == 1
        assert 0.04 <= fired_at[0] - started < 0.2

    @pytest.mark.asyncio
    async def test_cancelled_timer_never_runs(self):
        scheduler = AsyncioScheduler()
        calls = []

        async def callback():
            calls.append(True)

        handle = scheduler.call_later(10, callback)
        handle.cancel()
        await asyncio.sleep(0.05)

        assert calls == []
        assert scheduler._tasks == set()

    @pytest.mark.asyncio
    async def test_negative_delay_runs_immediately(self):
        scheduler = AsyncioScheduler()
        fired = asyncio.Event()

        async def callback():
            fired.set()

        scheduler.call_later(-5, callback)
        await asyncio.wait_for(fired.wait(), timeout=1)


def test_system_clock_is_milliseconds():
    assert system_clock() > 1_000_000_000_000
