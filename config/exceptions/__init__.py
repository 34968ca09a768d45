"""
Enrollment calendar sync - Canonical exception hierarchy.

Source of truth for all calendar sync exceptions. Every error raised by the
sync client, the window calculator and the provider mirror derives from
EnrollmentError so callers can catch the whole family at one seam.
"""

from typing import Any, Optional


class EnrollmentError(Exception):
    """Base exception for the enrollment office tooling."""


class CalendarSyncError(EnrollmentError):
    """Errors raised by the calendar sync engine."""


class AuthRequired(CalendarSyncError):
    """No bearer credential is available; no request was issued."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ValidationError(CalendarSyncError):
    """Malformed local input, caught before dispatch."""


class MissingIdError(ValidationError):
    """An update was requested for an event without an id."""

    def __init__(self, message: str = "Event ID is required for updating"):
        super().__init__(message)


class InvalidWindowError(ValidationError):
    """A fetch window could not be computed from the given anchor or view."""


class NetworkError(CalendarSyncError):
    """The REST boundary could not be reached."""


class ProviderError(CalendarSyncError):
    """The REST boundary answered with a non-success status.

    Attributes:
        status: HTTP status code returned by the backend
        payload: Decoded JSON body (empty dict when the body was not JSON)
    """

    def __init__(self, status: int, message: str, payload: Optional[Any] = None):
        super().__init__(message)
        self.status = status
        self.payload = payload if payload is not None else {}


class FeatureDisabledError(CalendarSyncError):
    """An optional action was invoked while its feature flag is off."""


class MirrorError(EnrollmentError):
    """Errors while mirroring local schedules to the external calendar."""
