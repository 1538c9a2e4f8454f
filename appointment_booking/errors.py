"""Exception hierarchy for the booking flow.

Nothing here is fatal to the application: every error is scoped to a single
booking session and is recoverable by retrying or re-selecting.
"""


class BookingError(Exception):
    """Base class for all booking-flow errors."""

    code = "booking_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class BookingValidationError(BookingError):
    """A required piece of the selection or user profile is missing."""

    code = "validation_error"


class SelectionError(BookingError):
    """A selection was made out of order or names an unknown option."""

    code = "invalid_selection"


class DateNotSelectableError(SelectionError):
    code = "date_not_selectable"


class SelectionLockedError(SelectionError):
    code = "selection_locked"


class SubmissionInProgressError(BookingError):
    code = "submission_in_progress"


class SubmissionError(BookingError):
    """The server rejected a booking or reschedule."""

    code = "submission_failed"


class ApiError(BookingError):
    """A call to the remote API failed."""

    code = "api_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
