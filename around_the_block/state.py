"""Shared state and domain model definitions.

Value types (coordinates, venues, check-ins, samples) are frozen pydantic
models so they can be parsed straight from backend JSON and passed between
tasks without copying. Snapshots handed to observers are TypedDicts so they
stay plain JSON.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional, TypedDict

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

JsonDict = dict[str, object]


def _first(data: dict, *keys: str) -> Any:
    """Return the first non-None value among keys."""

    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


class Coordinate(BaseModel):
    """A point on the globe in decimal degrees."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class Venue(BaseModel):
    """A bar from the external catalog. The core only reads id/name/location."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    location: Coordinate
    average_wait_minutes: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _from_backend(cls, data: Any) -> Any:
        # The bar listing is flat and uses barId/barName in older rows.
        if not isinstance(data, dict):
            return data
        out = dict(data)
        out["id"] = _first(data, "id", "barId")
        out["name"] = _first(data, "name", "barName")
        if "location" not in data and "latitude" in data:
            out["location"] = {
                "latitude": data["latitude"],
                "longitude": data.get("longitude"),
            }
        if "average_wait_minutes" not in data:
            out["average_wait_minutes"] = data.get("avgTime")
        return out

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return str(value) if value is not None else value


class CheckIn(BaseModel):
    """A server-persisted record asserting a user is at a venue."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    venue_id: str
    venue_name: str
    location: Coordinate
    started_at: Optional[datetime] = None
    is_active: bool = True
    username: Optional[str] = None
    checked_out_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _from_backend(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        out = dict(data)
        out["id"] = _first(data, "id", "_id")

        user = _first(data, "user_id", "userId")
        username = data.get("username")
        if isinstance(user, dict):
            # GET /checkins/active populates userId with the user document.
            username = username or user.get("username")
            user = _first(user, "_id", "id")
        out["user_id"] = str(user) if user is not None else None
        out["username"] = username

        venue_id = _first(data, "venue_id", "venueId", "barId")
        out["venue_id"] = str(venue_id) if venue_id is not None else None
        out["venue_name"] = _first(data, "venue_name", "venueName", "barName")
        if "location" not in data and "latitude" in data:
            out["location"] = {
                "latitude": data["latitude"],
                "longitude": data.get("longitude"),
            }
        out["started_at"] = _first(data, "started_at", "startedAt", "checkedInAt")
        out["checked_out_at"] = _first(data, "checked_out_at", "checkedOutAt")
        active = _first(data, "is_active", "isActive")
        out["is_active"] = True if active is None else active
        return out

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return str(value) if value is not None else value


class LocationSample(BaseModel):
    """One reading from the device location watch."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = None
    # Milliseconds since the epoch, as reported by the device.
    timestamp: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _unwrap_coords(cls, data: Any) -> Any:
        # Expo-style payloads nest the reading under "coords".
        if isinstance(data, dict) and isinstance(data.get("coords"), dict):
            return {**data["coords"], "timestamp": data.get("timestamp")}
        return data

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


class MonitorSettings(BaseModel):
    """Thresholds shared by automatic check-in, manual check-in and wait times."""

    model_config = ConfigDict(frozen=True)

    proximity_radius_meters: float = Field(default=100.0, gt=0)
    dwell_threshold_ms: float = Field(default=900_000, gt=0)
    sample_interval_ms: float = Field(default=60_000, ge=0)
    sample_distance_meters: float = Field(default=50.0, ge=0)

    @classmethod
    def from_config(cls, cfg: Any) -> "MonitorSettings":
        return cls(
            proximity_radius_meters=cfg.PROXIMITY_RADIUS_METERS,
            dwell_threshold_ms=cfg.DWELL_THRESHOLD_MS,
            sample_interval_ms=cfg.SAMPLE_INTERVAL_MS,
            sample_distance_meters=cfg.SAMPLE_DISTANCE_METERS,
        )


class MonitorStatus(str, Enum):
    IDLE = "idle"
    DWELLING = "dwelling"
    CHECKED_IN = "checked_in"


@dataclass(frozen=True)
class DwellTracker:
    """Which venue the user is lingering near, and since when (ms)."""

    venue: Venue
    since: float


class MonitorSnapshot(TypedDict, total=False):
    """JSON view of a check-in monitor handed to observers and the API."""

    # Session owner.
    user_id: str
    # idle, dwelling or checked_in.
    status: str
    # Whether a location stream is being consumed.
    is_monitoring: bool
    # False when only foreground tracking was granted.
    background_enabled: bool
    # Mirrored server record, or None.
    current_check_in: Optional[JsonDict]
    # Dwell tracker fields, None when idle.
    dwell_venue_id: Optional[str]
    dwell_since: Optional[float]
    # Size of the venue catalog in use.
    venue_count: int
