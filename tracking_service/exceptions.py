"""
Exceptions raised by the tracking subsystem.

The HTTP layer maps each of these to a structured ``success: false`` payload.
"""
from typing import Any, Optional


class TrackingError(Exception):
    """Base class for tracking failures."""

    def __init__(self, message: str, detail: Optional[Any] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class AuthError(TrackingError):
    """The telemetry provider refused to open a session."""


class RemoteError(TrackingError):
    """A telemetry provider request failed."""

    def __init__(self, message: str, code: Optional[int] = None, detail: Optional[Any] = None):
        self.code = code
        super().__init__(message, detail)


class VehicleNotFoundError(TrackingError):
    """No vehicle exists with the requested id."""


class NoTrackingReferenceError(TrackingError):
    """The vehicle has no provider unit id and cannot be tracked."""


class AlreadyTrackingError(TrackingError):
    """A tracking session is already active for the delivery."""


class DecodeError(TrackingError):
    """A provider payload could not be turned into a sample."""


class StoreWriteError(TrackingError):
    """The time-series store rejected or failed a write."""
