"""Error taxonomy shared by the slot generator and the booking manager."""
from __future__ import annotations


class BookingError(Exception):
    """Base class for errors the HTTP layer turns into JSON responses."""

    code = "booking_error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": self.message}


class InvalidInputError(BookingError):
    code = "invalid_payload"
    status_code = 400


class NotFoundError(BookingError):
    code = "not_found"
    status_code = 404


class ConflictError(BookingError):
    """The requested interval overlaps an appointment or a blocked slot."""

    code = "conflict"
    status_code = 409


class InvalidTransitionError(BookingError):
    code = "invalid_transition"
    status_code = 400


class TransientStoreFailure(BookingError):
    """Serialization failure or lock timeout. Booking writes retry it."""

    code = "transient_store_failure"
    status_code = 503
