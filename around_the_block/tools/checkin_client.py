"""
Check-in API client – call the Around the Block backend REST endpoints.

The client does NOT keep any check-in state. It translates HTTP outcomes
into the error taxonomy in ``around_the_block.utils.errors`` so callers can
decide between reconciling silently and telling the user.

Usage: construct one client per user session with that user's bearer token.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from around_the_block.config import config
from around_the_block.state import CheckIn, Coordinate, Venue
from around_the_block.utils.errors import (
    ConflictError,
    ForbiddenError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
    RemoteStoreError,
    UnauthorizedError,
)
from around_the_block.utils.logging_config import logger


def _headers(auth_token: Optional[str] = None) -> dict:
    h = {"Content-Type": "application/json"}
    if auth_token:
        h["Authorization"] = f"Bearer {auth_token}"
    return h


def _body(r: httpx.Response) -> Any:
    if not r.content:
        return None
    try:
        return r.json()
    except ValueError:
        return {"message": r.text}


def _error_from_response(r: httpx.Response, data: Any) -> RemoteStoreError:
    """Map a failed response onto the remote store error taxonomy."""
    message = ""
    if isinstance(data, dict):
        message = str(data.get("message") or data.get("error") or "")
    message = message or f"HTTP {r.status_code}"
    lowered = message.lower()
    code = r.status_code

    if code == 401:
        return UnauthorizedError("Unauthorized: invalid or expired user token", code)
    if code == 403:
        return ForbiddenError(message, code)
    if code == 404:
        return NotFoundError(message, code)
    if code == 409 or (code == 400 and "already checked in" in lowered):
        return ConflictError(message, code)
    if code == 429 or (code == 400 and "spam" in lowered):
        return RateLimitedError(message, code)
    if code >= 500:
        return NetworkError(message, code)
    return RemoteStoreError(message, code)


class CheckInClient:
    """Async REST client for check-ins, bars and wait times."""

    def __init__(
        self,
        auth_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.auth_token = auth_token
        self.base_url = (base_url or config.BACKEND_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.BACKEND_TIMEOUT
        self._transport = transport

    async def request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        """Send one request and return the decoded body.

        Raises:
            NetworkError: transport failure or 5xx.
            RemoteStoreError: any other non-2xx response (see subclasses).
        """
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                r = await client.request(
                    method,
                    url,
                    json=json,
                    params=params,
                    headers=_headers(self.auth_token),
                )
        except httpx.HTTPError as e:
            logger.error("%s %s failed: %s", method, path, e)
            raise NetworkError(str(e) or type(e).__name__) from e

        data = _body(r)
        if not r.is_success:
            raise _error_from_response(r, data)
        return data

    async def create_check_in(
        self,
        user_id: str,
        venue_id: str,
        venue_name: str,
        location: Coordinate,
    ) -> CheckIn:
        """
        Create a check-in for the user at the venue.

        Raises:
            ConflictError: the backend already has an active check-in.
        """
        data = await self.request(
            "POST",
            "/checkins",
            json={
                "userId": user_id,
                "venueId": venue_id,
                "venueName": venue_name,
                "latitude": location.latitude,
                "longitude": location.longitude,
            },
        )
        record = data.get("checkIn") if isinstance(data, dict) else None
        if not record:
            raise RemoteStoreError("Check-in response did not include a record")
        return CheckIn.model_validate(record)

    async def end_check_in(self, check_in_id: str) -> None:
        """
        End (check out of) a check-in.

        Raises:
            NotFoundError: the check-in does not exist or was already ended.
        """
        await self.request("POST", f"/checkins/{check_in_id}/checkout")

    async def get_current_check_in(self, user_id: str) -> Optional[CheckIn]:
        """Fetch the user's active check-in, or None."""
        data = await self.request("GET", f"/checkins/user/{user_id}")
        if not data:
            return None
        check_in = CheckIn.model_validate(data)
        return check_in if check_in.is_active else None

    async def get_active_check_ins(
        self, venue_id: Optional[str] = None
    ) -> list[CheckIn]:
        """List active check-ins, globally or for one venue."""
        path = f"/checkins/bar/{venue_id}" if venue_id else "/checkins/active"
        data = await self.request("GET", path)
        return [CheckIn.model_validate(item) for item in data or []]

    async def list_venues(self) -> list[Venue]:
        """Fetch the bar catalog used for proximity matching."""
        data = await self.request("GET", "/bars")
        venues: list[Venue] = []
        for item in data or []:
            if item.get("latitude") is None or item.get("longitude") is None:
                logger.debug("Skipping bar without coordinates: %s", item.get("id"))
                continue
            venues.append(Venue.model_validate(item))
        return venues
