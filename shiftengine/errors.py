"""Failure taxonomy shared by every scheduling operation."""

from __future__ import annotations


class SchedulingError(Exception):
    """Base class for all typed scheduling failures."""

    code: str = "internal"
    retryable: bool = False

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(code='{self.code}', message='{self.message}')>"


class NotFound(SchedulingError):
    code = "not_found"


class ValidationFailed(SchedulingError):
    """Malformed input, inverted window bounds, or a violated scheduling rule."""

    code = "validation_failed"


class WindowClosed(SchedulingError):
    code = "window_closed"


class Forbidden(SchedulingError):
    """Eligibility failure, period access failure, or self-service disabled."""

    code = "forbidden"


class AlreadyExists(SchedulingError):
    code = "already_exists"


class CapacityExceeded(SchedulingError):
    code = "capacity_exceeded"


class Conflict(SchedulingError):
    """Lock contention or an exceeded transaction deadline. Safe to retry."""

    code = "conflict"
    retryable = True


class Internal(SchedulingError):
    code = "internal"


__all__ = [
    "SchedulingError",
    "NotFound",
    "ValidationFailed",
    "WindowClosed",
    "Forbidden",
    "AlreadyExists",
    "CapacityExceeded",
    "Conflict",
    "Internal",
]
