"""
Pytest configuration and shared fixtures for all tests.

This file is automatically loaded by pytest and provides:
  - Test configuration (env vars) set before the package is imported
  - A manual clock and timer scheduler so dwell timing is deterministic
  - An in-memory stand-in for the backend check-in API
  - A small venue catalog around (40.000, -73.000)
"""

import os

# Config is read once at import time, so the environment must be set first.
os.environ.setdefault("BACKEND_API_URL", "http://backend.test")
os.environ.setdefault("SERVICE_TOKEN", "")

import pytest

from around_the_block.state import CheckIn, Coordinate, MonitorSettings, Venue


class FakeClock:
    """Milliseconds that only move when a test says so."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeTimer:
    def __init__(self, due: float, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Records armed timers; tests fire them explicitly."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.timers: list[FakeTimer] = []

    def call_later(self, delay_ms, callback) -> FakeTimer:
        timer = FakeTimer(self.clock.now + delay_ms, callback)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    async def run_due(self) -> None:
        for timer in [t for t in self.active if t.due <= self.clock.now]:
            timer.fired = True
            await timer.callback()

    async def fire(self, timer: FakeTimer) -> None:
        """Fire a timer even if it was cancelled, like a late event-loop callback."""
        timer.fired = True
        await timer.callback()


class FakeCheckInStore:
    """In-memory backend. Errors set on *_error are raised once."""

    def __init__(self):
        self.created: list[tuple] = []
        self.ended: list[str] = []
        self.lookups = 0
        self.current: CheckIn | None = None
        self.venues: list[Venue] = []
        self.create_error: Exception | None = None
        self.end_error: Exception | None = None
        self.lookup_error: Exception | None = None
        self._seq = 0

    async def create_check_in(self, user_id, venue_id, venue_name, location):
        self.created.append((user_id, venue_id, venue_name, location))
        if self.create_error is not None:
            error, self.create_error = self.create_error, None
            raise error
        self._seq += 1
        self.current = CheckIn(
            id=f"c{self._seq}",
            user_id=user_id,
            venue_id=venue_id,
            venue_name=venue_name,
            location=location,
        )
        return self.current

    async def end_check_in(self, check_in_id):
        self.ended.append(check_in_id)
        if self.end_error is not None:
            error, self.end_error = self.end_error, None
            raise error
        self.current = None

    async def get_current_check_in(self, user_id):
        self.lookups += 1
        if self.lookup_error is not None:
            error, self.lookup_error = self.lookup_error, None
            raise error
        return self.current

    async def get_active_check_ins(self, venue_id=None):
        if self.current is None:
            return []
        if venue_id and self.current.venue_id != venue_id:
            return []
        return [self.current]

    async def list_venues(self):
        return list(self.venues)


# Venue V1 sits on the test origin; V2 is ~56 m north of it.
V1_LOCATION = Coordinate(latitude=40.000, longitude=-73.000)
V2_LOCATION = Coordinate(latitude=40.0005, longitude=-73.000)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def store():
    return FakeCheckInStore()


@pytest.fixture
def settings():
    return MonitorSettings(
        proximity_radius_meters=100,
        dwell_threshold_ms=900_000,
        sample_interval_ms=60_000,
        sample_distance_meters=50,
    )


@pytest.fixture
def venue_one():
    return Venue(id="v1", name="The Corner Tap", location=V1_LOCATION)


@pytest.fixture
def venue_two():
    return Venue(id="v2", name="Blue Door", location=V2_LOCATION)


@pytest.fixture
def venues(venue_one, venue_two):
    return [venue_one, venue_two]
