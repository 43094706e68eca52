"""Marketplace exceptions mapped to HTTP status codes."""


class AppException(Exception):
    """Base application exception.

    Subclasses set ``status_code`` and ``default_message``; instances may
    carry response headers that the error handler passes through.
    """

    status_code: int = 500
    default_message: str = "Internal error"

    def __init__(
        self,
        message: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.message = message or self.default_message
        self.headers = headers
        super().__init__(self.message)


class BadRequestException(AppException):
    status_code = 400
    default_message = "Bad request"


class ForbiddenException(AppException):
    status_code = 403
    default_message = "Forbidden"


class NotFoundException(AppException):
    status_code = 404
    default_message = "Resource not found"


class ConflictException(AppException):
    """Request conflicts with the current state of a resource."""

    status_code = 409
    default_message = "Conflict"


class ValidationException(AppException):
    status_code = 422
    default_message = "Validation error"


class IllegalTransitionException(ConflictException):
    """Requested status change is not in the appointment transition table."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from {current} to {target}")


class EligibilityException(BadRequestException):
    """Cancel or reschedule requested outside the allowed time window."""

    default_message = "Appointment is no longer eligible for this change"


class RateLimitException(AppException):
    """Caller exceeded a rate limit; ``Retry-After`` is always set."""

    status_code = 429
    default_message = "Rate limit exceeded"

    def __init__(
        self,
        message: str | None = None,
        retry_after: int = 60,
        headers: dict[str, str] | None = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, headers={**(headers or {}), "Retry-After": str(retry_after)})
