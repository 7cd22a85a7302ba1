"""
Unit tests for the per-user session registry.
"""

import asyncio
from functools import partial

import pytest

from around_the_block.monitor.check_in_monitor import CheckInMonitor
from around_the_block.monitor.sessions import SessionRegistry
from around_the_block.state import LocationSample, MonitorStatus
from around_the_block.utils.errors import (
    NetworkError,
    PermissionDeniedError,
    SessionNotFoundError,
)


async def drain():
    for _ in range(20):
        await asyncio.sleep(0)


@pytest.fixture
def registry(store, settings, clock, scheduler):
    return SessionRegistry(
        client_factory=lambda token: store,
        settings=settings,
        monitor_factory=partial(CheckInMonitor, clock=clock, scheduler=scheduler),
    )


class TestSessionRegistry:
    @pytest.mark.asyncio
    async def test_start_uses_given_venues(self, registry, venues, store):
        session = await registry.start("u1", venues=venues)
        assert "u1" in registry
        assert len(registry) == 1
        assert [v.id for v in session.monitor.venues] == ["v1", "v2"]
        assert session.monitor.is_monitoring
        assert store.lookups == 1
        await registry.stop_all()

    @pytest.mark.asyncio
    async def test_start_loads_catalog(self, registry, venues, store):
        store.venues = venues
        session = await registry.start("u1")
        assert len(session.monitor.venues) == 2
        await registry.stop_all()

    @pytest.mark.asyncio
    async def test_catalog_failure_starts_empty(self, registry, store):
        async def failing():
            raise NetworkError("down")

        store.list_venues = failing
        session = await registry.start("u1")
        assert session.monitor.venues == []
        await registry.stop_all()

    @pytest.mark.asyncio
    async def test_start_twice_returns_running_session(self, registry, venues, venue_one):
        first = await registry.start("u1", venues=venues)
        second = await registry.start("u1", venues=[venue_one])
        assert first is second
        assert [v.id for v in first.monitor.venues] == ["v1"]
        await registry.stop_all()

    @pytest.mark.asyncio
    async def test_users_are_independent(self, registry, venues):
        a = await registry.start("a", venues=venues)
        b = await registry.start("b", venues=venues)
        assert a.monitor is not b.monitor

        await registry.stop("a")
        assert "a" not in registry
        assert b.monitor.is_monitoring
        await registry.stop_all()

    @pytest.mark.asyncio
    async def test_foreground_denied_registers_nothing(self, registry, venues):
        with pytest.raises(PermissionDeniedError):
            await registry.start("u1", venues=venues, foreground_granted=False)
        assert "u1" not in registry

    @pytest.mark.asyncio
    async def test_unknown_user(self, registry):
        with pytest.raises(SessionNotFoundError):
            registry.get("nobody")
        with pytest.raises(SessionNotFoundError):
            await registry.stop("nobody")

    @pytest.mark.asyncio
    async def test_samples_flow_to_monitor(self, registry, venues, store, clock):
        session = await registry.start("u1", venues=venues)

        await registry.push("u1", LocationSample(latitude=40.0, longitude=-73.0, timestamp=0))
        await drain()
        assert session.monitor.status is MonitorStatus.DWELLING

        clock.advance(900_000)
        await registry.push(
            "u1", LocationSample(latitude=40.0, longitude=-73.0, timestamp=900_000)
        )
        await drain()
        assert session.monitor.status is MonitorStatus.CHECKED_IN
        assert [c[1] for c in store.created] == ["v1"]

        await registry.stop("u1")
        assert session.source.closed
        assert not session.monitor.is_monitoring
        assert session.monitor._consumer.done()

    @pytest.mark.asyncio
    async def test_stopped_session_is_replaced(self, registry, venues):
        first = await registry.start("u1", venues=venues)
        first.monitor.stop()
        second = await registry.start("u1", venues=venues)
        assert second is not first
        assert second.monitor.is_monitoring
        await registry.stop_all()

    @pytest.mark.asyncio
    async def test_push_to_dead_monitor_drops_session(self, registry, venues):
        session = await registry.start("u1", venues=venues)
        session.monitor.stop()
        await session.monitor.join()

        with pytest.raises(SessionNotFoundError):
            await registry.push("u1", LocationSample(latitude=40.0, longitude=-73.0))
        assert "u1" not in registry
        assert session.source.closed

    @pytest.mark.asyncio
    async def test_push_after_stream_failure(self, registry, venues):
        session = await registry.start("u1", venues=venues)

        async def broken(sample):
            raise RuntimeError("sensor crashed")

        session.monitor.handle_sample = broken
        await registry.push("u1", LocationSample(latitude=40.0, longitude=-73.0))
        await session.monitor.join()
        assert not session.monitor.is_monitoring

        with pytest.raises(SessionNotFoundError):
            await registry.push("u1", LocationSample(latitude=40.0, longitude=-73.0))
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_stop_all_waits_for_consumers(self, registry, venues):
        a = await registry.start("a", venues=venues)
        b = await registry.start("b", venues=venues)

        await registry.stop_all()

        assert len(registry) == 0
        assert a.monitor._consumer.done()
        assert b.monitor._consumer.done()
