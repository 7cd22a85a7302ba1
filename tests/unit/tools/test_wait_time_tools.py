"""
Unit tests for wait-time reporting.

Covers the proximity gate (no request is sent when the user is too far),
input validation, backend error translation and display labels.
"""

import json

import httpx
import pytest

from around_the_block.state import Coordinate, Venue
from around_the_block.tools.checkin_client import CheckInClient
from around_the_block.tools.wait_time_tools import (
    can_submit_wait_time,
    get_wait_time_average,
    submit_wait_time,
    wait_time_label,
)
from around_the_block.utils.errors import InvalidInputError, RateLimitedError, TooFarError

VENUE = Venue(id="v1", name="The Corner Tap", location=Coordinate(latitude=40.0, longitude=-73.0))
AT_VENUE = Coordinate(latitude=40.0003, longitude=-73.0)
FAR_AWAY = Coordinate(latitude=40.01, longitude=-73.0)


class RecordingHandler:
    def __init__(self, response):
        self.response = response
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return self.response


def make_client(handler):
    return CheckInClient(base_url="http://backend.test", transport=httpx.MockTransport(handler))


class TestGate:
    def test_near(self):
        assert can_submit_wait_time(AT_VENUE, VENUE, 100) is True

    def test_far(self):
        assert can_submit_wait_time(FAR_AWAY, VENUE, 100) is False

    def test_unknown_location(self):
        assert can_submit_wait_time(None, VENUE) is False


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submits_when_near(self):
        handler = RecordingHandler(httpx.Response(201, json={"message": "Saved"}))
        result = await submit_wait_time(make_client(handler), VENUE, AT_VENUE, 20, radius_meters=100)

        assert result == {"message": "Saved"}
        (request,) = handler.requests
        assert request.url.path == "/bartime"
        assert json.loads(request.content) == {
            "barId": "v1",
            "barName": "The Corner Tap",
            "latitude": 40.0,
            "longitude": -73.0,
            "time": 20,
        }

    @pytest.mark.asyncio
    async def test_too_far_sends_nothing(self):
        handler = RecordingHandler(httpx.Response(201, json={}))
        with pytest.raises(TooFarError):
            await submit_wait_time(make_client(handler), VENUE, FAR_AWAY, 20, radius_meters=100)
        assert handler.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("minutes", [-1, "ten", True, None, float("nan"), float("inf")])
    async def test_rejects_bad_minutes(self, minutes):
        handler = RecordingHandler(httpx.Response(201, json={}))
        with pytest.raises(InvalidInputError):
            await submit_wait_time(make_client(handler), VENUE, AT_VENUE, minutes)
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_zero_minutes_allowed(self):
        handler = RecordingHandler(httpx.Response(201, json={"message": "Saved"}))
        await submit_wait_time(make_client(handler), VENUE, AT_VENUE, 0, radius_meters=100)
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_backend_distance_rejection(self):
        handler = RecordingHandler(httpx.Response(403, json={"message": "Too far"}))
        with pytest.raises(TooFarError, match="wait time"):
            await submit_wait_time(make_client(handler), VENUE, AT_VENUE, 5, radius_meters=100)

    @pytest.mark.asyncio
    async def test_backend_rate_limit(self):
        handler = RecordingHandler(httpx.Response(400, json={"message": "No spamming!"}))
        with pytest.raises(RateLimitedError):
            await submit_wait_time(make_client(handler), VENUE, AT_VENUE, 5, radius_meters=100)


class TestAverage:
    @pytest.mark.asyncio
    async def test_average(self):
        handler = RecordingHandler(httpx.Response(200, json={"average": 12.5}))
        assert await get_wait_time_average(make_client(handler), "v1") == 12.5
        assert handler.requests[0].url.path == "/bartime/v1"

    @pytest.mark.asyncio
    async def test_no_reports(self):
        handler = RecordingHandler(httpx.Response(200, json={"average": None}))
        assert await get_wait_time_average(make_client(handler), "v1") is None


class TestLabel:
    @pytest.mark.parametrize(
        "minutes,label",
        [
            (None, "No data"),
            (0, "No wait"),
            (10, "Short"),
            (25, "Moderate"),
            (60, "Long"),
            (90, "Very long"),
        ],
    )
    def test_labels(self, minutes, label):
        assert wait_time_label(minutes) == label
