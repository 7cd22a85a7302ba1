"""Custom exception types for consistent error handling."""

from __future__ import annotations


class CheckInError(Exception):
    """Base for errors that end up in front of the user."""

    message = "Something went wrong"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class PermissionDeniedError(CheckInError):
    """Raised when foreground location permission is refused."""

    message = "Location permission is required to monitor check-ins"


class TooFarError(CheckInError):
    """Raised when an action needs the user to be at the venue."""

    message = "You are too far from the bar!"


class NoActiveCheckInError(CheckInError):
    """Raised on check-out when nothing is checked in."""

    message = "You are not checked in anywhere"


class AlreadyCheckedInError(CheckInError):
    """Raised on manual check-in while checked in at another venue."""

    message = "You are already checked in to a location"


class SessionNotFoundError(CheckInError):
    """Raised when no monitor is running for the user."""

    message = "No monitoring session for this user"


class InvalidInputError(CheckInError):
    """Raised when request input validation fails."""

    message = "Invalid input"


class RemoteStoreError(Exception):
    """Raised when the backend rejects a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ConflictError(RemoteStoreError):
    """The backend already holds an active check-in for the user."""


class NotFoundError(RemoteStoreError):
    """The requested record does not exist (or was already ended)."""


class UnauthorizedError(RemoteStoreError):
    """Missing or expired bearer token."""


class ForbiddenError(RemoteStoreError):
    """The backend refused the action for this user."""


class RateLimitedError(RemoteStoreError):
    """The backend throttled the request (e.g. repeated wait-time reports)."""


class NetworkError(RemoteStoreError):
    """Transport failure or a 5xx from the backend."""
