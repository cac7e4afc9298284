"""Booking error taxonomy.

Every rejection carries a short machine-readable rule name and a message
fit to show the user. Routes do not catch these; the app-level handler in
courtslot.main turns them into HTTP responses.
"""

from fastapi import status


class BookingError(Exception):
    """Base class for rejected booking operations."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, rule: str, message: str):
        self.rule = rule
        self.message = message
        super().__init__(message)

    def as_detail(self) -> list[dict]:
        return [{"rule": self.rule, "message": self.message}]


class ValidationError(BookingError):
    """Malformed input: bad date, bad email, out-of-range participant count."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class PolicyError(BookingError):
    """A booking rule said no: ban, cooldown, conflict, lead time, overlapping block."""

    def __init__(self, rule: str, message: str, status_code: int | None = None):
        super().__init__(rule, message)
        if status_code is not None:
            self.status_code = status_code


class ConflictError(BookingError):
    """Lost a race for a court interval, or the reservation already reached a terminal state.

    Safe to retry with a fresh slot lookup.
    """

    status_code = status.HTTP_409_CONFLICT


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class TransientError(BookingError):
    """The store was unavailable. Nothing was committed; the caller may retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
