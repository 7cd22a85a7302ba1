"""Per-user monitor sessions hosted by the service."""

from __future__ import annotations

from typing import Callable, Iterable, Optional

from around_the_block.monitor.check_in_monitor import CheckInMonitor
from around_the_block.monitor.location_stream import QueueLocationSource
from around_the_block.state import LocationSample, MonitorSettings, Venue
from around_the_block.tools.checkin_client import CheckInClient
from around_the_block.utils.errors import RemoteStoreError, SessionNotFoundError
from around_the_block.utils.logging_config import logger

ClientFactory = Callable[[Optional[str]], CheckInClient]


class MonitorSession:
    """A running monitor and the queue that feeds it."""

    def __init__(self, monitor: CheckInMonitor, source: QueueLocationSource):
        self.monitor = monitor
        self.source = source

    async def stop(self) -> None:
        self.source.close()
        self.monitor.stop()
        await self.monitor.join()


class SessionRegistry:
    """Owns one independent monitor per user id."""

    def __init__(
        self,
        client_factory: ClientFactory = CheckInClient,
        settings: Optional[MonitorSettings] = None,
        monitor_factory: Callable[..., CheckInMonitor] = CheckInMonitor,
    ):
        self._client_factory = client_factory
        self._settings = settings
        self._monitor_factory = monitor_factory
        self._sessions: dict[str, MonitorSession] = {}

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def client(self, auth_token: Optional[str] = None) -> CheckInClient:
        return self._client_factory(auth_token)

    def get(self, user_id: str) -> MonitorSession:
        try:
            return self._sessions[user_id]
        except KeyError:
            raise SessionNotFoundError() from None

    async def start(
        self,
        user_id: str,
        auth_token: Optional[str] = None,
        venues: Optional[Iterable[Venue]] = None,
        foreground_granted: bool = True,
        background_granted: bool = True,
    ) -> MonitorSession:
        """Start monitoring for user_id, or return the running session.

        When no venues are given the catalog is loaded from the backend.

        Raises:
            PermissionDeniedError: foreground location was refused.
        """

        existing = self._sessions.get(user_id)
        if existing is not None and existing.monitor.is_monitoring:
            if venues is not None:
                existing.monitor.update_venues(venues)
            return existing
        if existing is not None:
            await self.stop(user_id)

        client = self.client(auth_token)
        if venues is None:
            try:
                venues = await client.list_venues()
            except RemoteStoreError as e:
                logger.error("Could not load venues for %s: %s", user_id, e)
                venues = []

        monitor = self._monitor_factory(
            user_id=user_id, client=client, venues=venues, settings=self._settings
        )
        source = QueueLocationSource(
            foreground_granted=foreground_granted,
            background_granted=background_granted,
        )
        await monitor.start(source)
        session = MonitorSession(monitor, source)
        self._sessions[user_id] = session
        return session


    async def push(self, user_id: str, sample: LocationSample) -> None:
        """Queue a sample for the user's monitor.

        A session whose monitor has stopped (for example after a stream
        failure) is discarded instead of accumulating unread samples.

        Raises:
            SessionNotFoundError: no running monitor for user_id.
        """

        session = self.get(user_id)
        if not session.monitor.is_monitoring:
            logger.warning("Monitor for %s is no longer running; dropping session", user_id)
            await self.stop(user_id)
            raise SessionNotFoundError()
        session.source.put(sample)

    async def stop(self, user_id: str) -> None:
        session = self._sessions.pop(user_id, None)
        if session is None:
            raise SessionNotFoundError()
        await session.stop()

    async def stop_all(self) -> None:
        for user_id in list(self._sessions):
            await self.stop(user_id)
