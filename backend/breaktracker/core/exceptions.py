"""
Domain errors of the attendance/break engine.

Each error carries the HTTP status the API layer answers with; the scheduler
only logs them.
"""


class DomainError(Exception):
    """Base exception for business rule violations."""

    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__


class InvalidPolicy(DomainError):
    """Office policy is inconsistent."""

    status_code = 422


class InvalidTimeFormat(InvalidPolicy):
    """Time of day is not a valid 12-hour string."""


class InvalidStateTransition(DomainError):
    """Action is not allowed from the employee's current status."""

    status_code = 409


class NotOnBreak(InvalidStateTransition):
    """Not currently on break."""


class ConcurrencyLimitExceeded(DomainError):
    """Maximum concurrent breaks reached for this team. Please wait."""

    status_code = 429


class TooEarly(DomainError):
    """Attendance window is not open yet."""


class InvalidOverride(DomainError):
    """Attendance override is invalid."""


class EmployeeNotFound(DomainError):
    """Employee not found."""

    status_code = 404


class RecordNotFound(DomainError):
    """Record not found."""

    status_code = 404


class StoreUnavailable(DomainError):
    """Store is temporarily unavailable."""

    status_code = 503
