from fastapi import status


class ArbitrationError(Exception):
    """
    Base class for errors raised by the booking arbitration core.

    Each subclass carries the HTTP status code the API layer renders it with.
    """
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidRequest(ArbitrationError):
    """A required field is missing or malformed."""


class InvalidWindow(ArbitrationError):
    """The requested window does not end after it starts."""


class PastWindow(ArbitrationError):
    """The requested window starts before the current time."""


class OutOfRange(ArbitrationError):
    """A bounded field (attendance, text length) is out of range."""


class NotFound(ArbitrationError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidTransition(ArbitrationError):
    """The reservation is in a terminal state that forbids the transition."""
    status_code = status.HTTP_409_CONFLICT


class AlreadyApproved(InvalidTransition):
    pass


class ReservationConflict(ArbitrationError):
    """
    Raised when approving a reservation whose window is now held by
    another live reservation.
    """
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, detail: str, conflicting_id: int):
        super().__init__(detail)
        self.conflicting_id = conflicting_id


class StoreFailure(ArbitrationError):
    """The underlying store or lock failed; the operation was rolled back."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
