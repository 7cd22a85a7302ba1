"""Geofenced check-in monitor.

One ``CheckInMonitor`` per user session consumes location samples, tracks
how long the user has been near a venue, and checks them in automatically
once the dwell threshold is met. Leaving the dwell venue's radius checks
them out. Manual check-in/out runs through the same mutation routines, so
the monitor's ``current_check_in`` and dwell tracker stay authoritative no
matter what triggered a change.

Sample processing is a critical section guarded by an asyncio lock. Samples
that arrive while a check-in or check-out call is in flight are dropped.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Iterable, Optional, Union

from around_the_block.config import config
from around_the_block.monitor.location_stream import LocationSource, throttle_samples
from around_the_block.monitor.scheduling import (
    AsyncioScheduler,
    Clock,
    Scheduler,
    TimerHandle,
    system_clock,
)
from around_the_block.state import (
    CheckIn,
    Coordinate,
    DwellTracker,
    LocationSample,
    MonitorSettings,
    MonitorSnapshot,
    MonitorStatus,
    Venue,
)
from around_the_block.tools.checkin_client import CheckInClient
from around_the_block.utils.errors import (
    AlreadyCheckedInError,
    ConflictError,
    NoActiveCheckInError,
    NotFoundError,
    PermissionDeniedError,
    RemoteStoreError,
    TooFarError,
)
from around_the_block.utils.geo import distance_meters, is_near, nearest_venue
from around_the_block.utils.logging_config import logger

Listener = Callable[[Optional[CheckIn]], None]


class CheckInMonitor:
    """Check-in state machine for a single user session."""

    def __init__(
        self,
        user_id: str,
        client: CheckInClient,
        venues: Iterable[Venue] = (),
        settings: Optional[MonitorSettings] = None,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.user_id = user_id
        self.client = client
        self.settings = settings or MonitorSettings.from_config(config)
        self.logger = logger
        self._venues: list[Venue] = list(venues)
        self._clock = clock or system_clock
        self._scheduler = scheduler or AsyncioScheduler()

        self._current_check_in: Optional[CheckIn] = None
        self._dwell: Optional[DwellTracker] = None
        self._timer: Optional[TimerHandle] = None
        self._last_location: Optional[Coordinate] = None

        self._lock = asyncio.Lock()
        self._in_flight = False
        self._listeners: list[Listener] = []

        self._consumer: Optional[asyncio.Task] = None
        self._monitoring = False
        self._background_enabled = False

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def current_check_in(self) -> Optional[CheckIn]:
        return self._current_check_in

    @property
    def dwell(self) -> Optional[DwellTracker]:
        return self._dwell

    @property
    def venues(self) -> list[Venue]:
        return list(self._venues)

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    @property
    def background_enabled(self) -> bool:
        return self._background_enabled

    @property
    def status(self) -> MonitorStatus:
        if self._current_check_in is not None:
            return MonitorStatus.CHECKED_IN
        if self._dwell is not None:
            return MonitorStatus.DWELLING
        return MonitorStatus.IDLE

    def snapshot(self) -> MonitorSnapshot:
        check_in = self._current_check_in
        return {
            "user_id": self.user_id,
            "status": self.status.value,
            "is_monitoring": self._monitoring,
            "background_enabled": self._background_enabled,
            "current_check_in": check_in.model_dump(mode="json") if check_in else None,
            "dwell_venue_id": self._dwell.venue.id if self._dwell else None,
            "dwell_since": self._dwell.since if self._dwell else None,
            "venue_count": len(self._venues),
        }

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for check-in changes.

        The listener is called right away when a check-in is already known.
        Returns a function that removes the listener.
        """

        self._listeners.append(listener)
        if self._current_check_in is not None:
            self._call_listener(listener, self._current_check_in)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _call_listener(self, listener: Listener, check_in: Optional[CheckIn]) -> None:
        try:
            listener(check_in)
        except Exception:
            self.logger.exception("Check-in listener failed for %s", self.user_id)

    def _notify(self, check_in: Optional[CheckIn]) -> None:
        self._current_check_in = check_in
        for listener in list(self._listeners):
            self._call_listener(listener, check_in)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def update_venues(self, venues: Iterable[Venue]) -> None:
        self._venues = list(venues)

    async def load_current_check_in(self) -> Optional[CheckIn]:
        """Reconcile with the server's record of the user's check-in."""

        try:
            check_in = await self.client.get_current_check_in(self.user_id)
        except RemoteStoreError as e:
            self.logger.error("Failed to load check-in for %s: %s", self.user_id, e)
            return self._current_check_in

        async with self._lock:
            if check_in is None:
                self._notify(None)
            else:
                self._adopt(check_in)
        return check_in

    async def start(self, source: LocationSource) -> None:
        """Begin consuming samples from source.

        Raises:
            PermissionDeniedError: foreground location was refused.
        """

        if self._monitoring:
            return

        if not await source.request_foreground_permission():
            self.logger.warning("Foreground location permission denied for %s", self.user_id)
            raise PermissionDeniedError()

        self._background_enabled = await source.request_background_permission()
        if not self._background_enabled:
            self.logger.warning(
                "Background location permission denied - check-in will only work when app is open"
            )

        self._monitoring = True
        try:
            await self.load_current_check_in()
            samples = throttle_samples(
                source.watch(),
                self.settings.sample_interval_ms,
                self.settings.sample_distance_meters,
            )
            self._consumer = asyncio.create_task(self._consume(samples))
        except BaseException:
            self._release()
            raise
        self.logger.info("Started check-in monitoring for %s", self.user_id)

    def stop(self) -> None:
        """Stop consuming samples and disarm the dwell timer.

        Safe to call repeatedly. Does not check the user out.
        """

        consumer = self._consumer
        if consumer is not None and not consumer.done():
            consumer.cancel()
        if self._monitoring:
            self.logger.info("Stopped check-in monitoring for %s", self.user_id)
        self._release()

    async def join(self) -> None:
        """Wait for the sample consumer to finish."""

        if self._consumer is not None:
            await asyncio.gather(self._consumer, return_exceptions=True)

    @asynccontextmanager
    async def session(self, source: LocationSource) -> AsyncIterator["CheckInMonitor"]:
        await self.start(source)
        try:
            yield self
        finally:
            self.stop()
            await self.join()

    async def _consume(self, samples: AsyncIterator[LocationSample]) -> None:
        try:
            async for sample in samples:
                await self.handle_sample(sample)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.logger.exception("Location stream failed for %s", self.user_id)
        finally:
            # A restarted monitor owns a newer consumer; leave its state alone.
            if self._consumer is asyncio.current_task():
                self._release()

    def _release(self) -> None:
        self._cancel_timer()
        self._dwell = None
        self._monitoring = False

    # ------------------------------------------------------------------
    # Automatic transitions
    # ------------------------------------------------------------------

    async def handle_sample(self, sample: Union[LocationSample, Coordinate]) -> bool:
        """Apply one location sample. Returns False if the sample was dropped."""

        location = sample.coordinate if isinstance(sample, LocationSample) else sample
        if self._in_flight:
            self.logger.debug("Dropping sample for %s: check-in call in flight", self.user_id)
            return False

        async with self._lock:
            self._last_location = location
            await self._transition(location)
        return True

    async def _transition(self, location: Coordinate) -> None:
        radius = self.settings.proximity_radius_meters
        nearest = nearest_venue(location, self._venues, radius)
        now = self._clock()

        if nearest is not None:
            if self._dwell is not None and self._dwell.venue.id == nearest.id:
                dwelled = now - self._dwell.since
                if dwelled >= self.settings.dwell_threshold_ms and self._current_check_in is None:
                    await self._auto_check_in(nearest, location)
            else:
                self._begin_dwell(nearest, now)
            return

        if self._current_check_in is not None and self._dwell is not None:
            away = distance_meters(location, self._dwell.venue.location)
            if away > radius:
                await self._auto_check_out()
                if self._current_check_in is not None:
                    # Check-out failed; keep the dwell venue so the next sample retries.
                    self._cancel_timer()
                    return

        if self._dwell is not None:
            self.logger.debug("Left %s; dwell reset", self._dwell.venue.id)
        self._reset_dwell()

    def _begin_dwell(self, venue: Venue, now: float) -> None:
        self._cancel_timer()
        tracker = DwellTracker(venue=venue, since=now)
        self._dwell = tracker

        async def fire() -> None:
            await self._on_dwell_timer(tracker)

        self._timer = self._scheduler.call_later(self.settings.dwell_threshold_ms, fire)
        self.logger.debug("Dwelling near %s for %s", venue.id, self.user_id)

    async def _on_dwell_timer(self, tracker: DwellTracker) -> None:
        async with self._lock:
            if self._dwell is not tracker:
                self.logger.debug("Ignoring stale dwell timer for %s", tracker.venue.id)
                return
            self._timer = None
            if self._current_check_in is not None:
                return
            location = self._last_location or tracker.venue.location
            await self._auto_check_in(tracker.venue, location)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _reset_dwell(self) -> None:
        self._cancel_timer()
        self._dwell = None

    async def _auto_check_in(self, venue: Venue, location: Coordinate) -> None:
        try:
            await self._perform_check_in(venue, location)
        except RemoteStoreError as e:
            self.logger.error("Automatic check-in at %s failed: %s", venue.id, e)

    async def _auto_check_out(self) -> None:
        try:
            await self._perform_check_out()
        except RemoteStoreError as e:
            self.logger.error("Automatic check-out for %s failed: %s", self.user_id, e)

    # ------------------------------------------------------------------
    # Shared mutation routines (caller holds the lock)
    # ------------------------------------------------------------------

    async def _perform_check_in(self, venue: Venue, location: Coordinate) -> CheckIn:
        if self._current_check_in is not None:
            return self._current_check_in

        self._in_flight = True
        try:
            try:
                check_in = await self.client.create_check_in(
                    self.user_id, venue.id, venue.name, location
                )
            except ConflictError:
                self.logger.info(
                    "Server already has an active check-in for %s; reconciling", self.user_id
                )
                check_in = await self.client.get_current_check_in(self.user_id)
                if check_in is None:
                    raise
        finally:
            self._in_flight = False

        self.logger.info("Checked in %s at %s", self.user_id, check_in.venue_name)
        self._adopt(check_in, venue if check_in.venue_id == venue.id else None)
        return check_in

    async def _perform_check_out(self) -> None:
        check_in = self._current_check_in
        if check_in is None:
            return

        self._in_flight = True
        try:
            await self.client.end_check_in(check_in.id)
        except NotFoundError:
            self.logger.info("Check-in %s already ended on the server", check_in.id)
        finally:
            self._in_flight = False

        self.logger.info("Checked out %s from %s", self.user_id, check_in.venue_name)
        self._reset_dwell()
        self._notify(None)

    def _adopt(self, check_in: CheckIn, venue: Optional[Venue] = None) -> None:
        """Mirror a server check-in and track its venue for automatic check-out."""

        if self._dwell is None or self._dwell.venue.id != check_in.venue_id:
            venue = venue or next(
                (v for v in self._venues if v.id == check_in.venue_id), None
            )
            if venue is not None:
                self._begin_dwell(venue, self._clock())
        self._notify(check_in)

    # ------------------------------------------------------------------
    # Manual transitions
    # ------------------------------------------------------------------

    async def manual_check_in(
        self, venue: Venue, user_location: Optional[Coordinate]
    ) -> CheckIn:
        """Check in at venue on the user's request.

        Raises:
            TooFarError: the user is outside the proximity radius.
            AlreadyCheckedInError: the user is checked in somewhere else.
            NetworkError: the backend could not be reached.
        """

        if not is_near(user_location, venue, self.settings.proximity_radius_meters):
            raise TooFarError()

        async with self._lock:
            self._last_location = user_location
            current = self._current_check_in
            if current is not None:
                if current.venue_id == venue.id:
                    return current
                raise AlreadyCheckedInError()
            try:
                check_in = await self._perform_check_in(venue, user_location)
            except ConflictError as e:
                raise AlreadyCheckedInError() from e
            if check_in.venue_id != venue.id:
                # The server already had the user elsewhere; that record is adopted.
                raise AlreadyCheckedInError()
            return check_in

    async def manual_check_out(self) -> None:
        """Check out on the user's request.

        Raises:
            NoActiveCheckInError: nothing is checked in.
            NetworkError: the backend could not be reached.
        """

        async with self._lock:
            if self._current_check_in is None:
                raise NoActiveCheckInError()
            await self._perform_check_out()
