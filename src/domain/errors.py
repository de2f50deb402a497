"""
Error taxonomy for the trip lifecycle.

Every error carries the HTTP status the API layer maps it to, so routes
never translate exceptions by hand.  Errors raised on the event path
(``MalformedEvent``, ``ConflictingAcceptance``) never reach a synchronous
caller; the acceptance processor turns them into failure records.
"""

from __future__ import annotations


class TripServiceError(Exception):
    """Base class for all expected lifecycle failures."""

    status_code: int = 500
    error_type: str = "TRIP_SERVICE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TripNotFound(TripServiceError):
    status_code = 404
    error_type = "NOT_FOUND"

    def __init__(self, trip_id: str):
        super().__init__(f"Trip not found with id: {trip_id}")
        self.trip_id = trip_id


class InvalidRequest(TripServiceError):
    status_code = 422
    error_type = "INVALID_REQUEST"


class UpstreamUnavailable(TripServiceError):
    status_code = 503
    error_type = "UPSTREAM_UNAVAILABLE"


class InvalidTransition(TripServiceError):
    status_code = 409
    error_type = "INVALID_TRANSITION"


class ConflictingAcceptance(TripServiceError):
    status_code = 409
    error_type = "CONFLICTING_ACCEPTANCE"

    def __init__(self, trip_id: str, assigned_driver: str, rejected_driver: str):
        super().__init__(
            f"Trip {trip_id} already accepted by driver {assigned_driver}; "
            f"ignoring acceptance by {rejected_driver}"
        )
        self.trip_id = trip_id
        self.assigned_driver = assigned_driver
        self.rejected_driver = rejected_driver


class MalformedEvent(TripServiceError):
    status_code = 400
    error_type = "MALFORMED_EVENT"


class ConcurrentUpdate(TripServiceError):
    status_code = 409
    error_type = "CONCURRENT_UPDATE"


class StaleTripVersion(Exception):
    """Raised by a store when a compare-and-swap write loses the race."""

    def __init__(self, trip_id: str, expected: int, actual: int | None):
        super().__init__(
            f"Trip {trip_id} changed concurrently "
            f"(expected version {expected}, found {actual})"
        )
        self.trip_id = trip_id
        self.expected = expected
        self.actual = actual
