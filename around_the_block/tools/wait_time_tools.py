"""Wait-time reporting: proximity gate, submission and display helpers."""

from __future__ import annotations

import math
from typing import Optional

from around_the_block.config import config
from around_the_block.state import Coordinate, Venue
from around_the_block.tools.checkin_client import CheckInClient
from around_the_block.utils.errors import ForbiddenError, InvalidInputError, TooFarError
from around_the_block.utils.geo import is_near
from around_the_block.utils.logging_config import logger


def can_submit_wait_time(
    user_location: Optional[Coordinate],
    venue: Optional[Venue],
    radius_meters: Optional[float] = None,
) -> bool:
    """Only users standing at the venue may report its line."""

    radius = config.PROXIMITY_RADIUS_METERS if radius_meters is None else radius_meters
    return is_near(user_location, venue, radius)


async def submit_wait_time(
    client: CheckInClient,
    venue: Venue,
    user_location: Optional[Coordinate],
    minutes: float,
    radius_meters: Optional[float] = None,
) -> dict:
    """Report a wait time for the venue.

    The proximity gate runs before any request is sent. The backend may
    re-check distance and answer 403; that is surfaced as TooFarError too.

    Raises:
        InvalidInputError: minutes is negative or not a number.
        TooFarError: the user is not at the venue.
        RateLimitedError: the user reported this venue within the last hour.
    """

    if (
        isinstance(minutes, bool)
        or not isinstance(minutes, (int, float))
        or not math.isfinite(minutes)
        or minutes < 0
    ):
        raise InvalidInputError("Wait time must be a non-negative number of minutes")

    if not can_submit_wait_time(user_location, venue, radius_meters):
        logger.info("Wait time for %s rejected: user too far", venue.id)
        raise TooFarError()

    try:
        data = await client.request(
            "POST",
            "/bartime",
            json={
                "barId": venue.id,
                "barName": venue.name,
                "latitude": venue.location.latitude,
                "longitude": venue.location.longitude,
                "time": minutes,
            },
        )
    except ForbiddenError as e:
        raise TooFarError("You are too far to submit a wait time!") from e

    logger.info("Wait time submitted for %s: %s min", venue.id, minutes)
    return data if isinstance(data, dict) else {}


async def get_wait_time_average(client: CheckInClient, venue_id: str) -> Optional[float]:
    """Recency-weighted average wait in minutes, or None without recent reports."""

    data = await client.request("GET", f"/bartime/{venue_id}")
    if not isinstance(data, dict) or data.get("average") is None:
        return None
    return float(data["average"])


def wait_time_label(minutes: Optional[float]) -> str:
    """Human label for an average wait."""

    if minutes is None:
        return "No data"
    if minutes <= 0:
        return "No wait"
    if minutes <= 10:
        return "Short"
    if minutes <= 30:
        return "Moderate"
    if minutes <= 60:
        return "Long"
    return "Very long"
