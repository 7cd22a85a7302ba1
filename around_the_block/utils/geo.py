"""Geospatial utilities used for distance and proximity checks."""

from __future__ import annotations

from math import atan2, cos, radians, sin, sqrt
from typing import Iterable, Optional

from around_the_block.state import Coordinate, Venue

EARTH_RADIUS_METERS = 6_371_000


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Calculate distance between two lat/lng points in meters.

    Args:
        lat1: Latitude of the first point.
        lng1: Longitude of the first point.
        lat2: Latitude of the second point.
        lng2: Longitude of the second point.

    Returns:
        Distance in meters.

    Notes:
        The Haversine formula accounts for spherical distance and is accurate
        enough for venue-level proximity (approx. +/- 0.5%).
    """

    lat1_rad = radians(lat1)
    lng1_rad = radians(lng1)
    lat2_rad = radians(lat2)
    lng2_rad = radians(lng2)

    delta_lat = lat2_rad - lat1_rad
    delta_lng = lng2_rad - lng1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(
        delta_lng / 2
    ) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates in meters."""

    return haversine_meters(a.latitude, a.longitude, b.latitude, b.longitude)


def is_near(
    user_location: Optional[Coordinate],
    venue: Optional[Venue],
    radius_meters: float,
) -> bool:
    """Whether the user is within radius_meters of the venue.

    Absent inputs are never near anything. The boundary is inclusive.
    """

    if user_location is None or venue is None:
        return False
    return distance_meters(user_location, venue.location) <= radius_meters


def nearest_venue(
    location: Coordinate,
    venues: Iterable[Venue],
    radius_meters: float,
) -> Optional[Venue]:
    """Closest venue within radius_meters, or None.

    Ties keep the venue that appears first in the catalog.
    """

    nearest: Optional[Venue] = None
    min_distance = float("inf")

    for venue in venues:
        distance = distance_meters(location, venue.location)
        if distance < min_distance and distance <= radius_meters:
            min_distance = distance
            nearest = venue

    return nearest
