"""Location sample sources and throttling."""

from __future__ import annotations

import asyncio
from typing import AsyncIterable, AsyncIterator, Optional, Protocol

from around_the_block.state import LocationSample
from around_the_block.utils.geo import distance_meters
from around_the_block.utils.logging_config import logger


class LocationSource(Protocol):
    """Device location provider as seen by the monitor.

    Permission requests resolve to True when granted. ``watch`` yields
    samples until the source is closed.
    """

    async def request_foreground_permission(self) -> bool: ...

    async def request_background_permission(self) -> bool: ...

    def watch(self) -> AsyncIterator[LocationSample]: ...


_CLOSED = object()


class QueueLocationSource:
    """A push-fed source: the caller puts samples, the monitor consumes them."""

    def __init__(
        self,
        foreground_granted: bool = True,
        background_granted: bool = True,
    ):
        self.foreground_granted = foreground_granted
        self.background_granted = background_granted
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def request_foreground_permission(self) -> bool:
        return self.foreground_granted

    async def request_background_permission(self) -> bool:
        return self.background_granted

    def put(self, sample: LocationSample) -> None:
        if self._closed:
            raise RuntimeError("location source is closed")
        self._queue.put_nowait(sample)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def watch(self) -> AsyncIterator[LocationSample]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


def _is_due(
    last: LocationSample,
    sample: LocationSample,
    interval_ms: float,
    min_distance_meters: float,
) -> bool:
    if interval_ms <= 0:
        return True
    if last.timestamp is not None and sample.timestamp is not None:
        if sample.timestamp - last.timestamp >= interval_ms:
            return True
    moved = distance_meters(last.coordinate, sample.coordinate)
    return moved >= min_distance_meters


async def throttle_samples(
    samples: AsyncIterable[LocationSample],
    interval_ms: float,
    min_distance_meters: float,
) -> AsyncIterator[LocationSample]:
    """Pass a sample when enough time has elapsed or the user moved far enough.

    The first sample always passes. Samples without timestamps are gated on
    displacement alone.
    """

    last: Optional[LocationSample] = None
    async for sample in samples:
        if last is None or _is_due(last, sample, interval_ms, min_distance_meters):
            last = sample
            yield sample
        else:
            logger.debug("Throttled location sample at %s", sample.timestamp)
