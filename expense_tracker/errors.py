"""Domain errors raised by the data and service layers.

The HTTP layer in ``main`` maps each class onto a status code; nothing below
it knows about HTTP.
"""


class ExpenseTrackerError(Exception):
    """Base class for all domain errors."""


class NotFoundError(ExpenseTrackerError):
    """Unknown email, token, user, expense or order."""


class InvalidStateError(ExpenseTrackerError):
    """The entity exists but is not in a state that allows the operation."""


class PermissionDeniedError(ExpenseTrackerError):
    """The acting user may not touch the entity or feature."""


class UpstreamError(ExpenseTrackerError):
    """Hashing, notification, gateway or database failure."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code
