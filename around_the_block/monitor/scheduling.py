"""Clock and timer seams for the check-in monitor.

Monitors never read the wall clock or the event loop's timers directly, so a
test can swap in a manual clock and fire timers on demand.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Protocol

Clock = Callable[[], float]
TimerCallback = Callable[[], Awaitable[None]]


def system_clock() -> float:
    """Milliseconds since the epoch."""

    return time.time() * 1000


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: float, callback: TimerCallback) -> TimerHandle: ...


class AsyncioScheduler:
    """Runs timer coroutines on the running event loop."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def call_later(self, delay_ms: float, callback: TimerCallback) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(delay_ms, 0) / 1000, self._spawn, callback)

    def _spawn(self, callback: TimerCallback) -> None:
        task = asyncio.ensure_future(callback())
        # Keep a reference until done so the task is not garbage collected.
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
