"""Errors raised by the scheduling core.

All of them are reported to the caller as-is; none are retried here.
"""


class SchedulingError(Exception):
    """Base class for scheduling failures that leave state untouched."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(SchedulingError):
    """Malformed input: bad enum value, non-positive duration, missing field."""


class SlotConflict(SchedulingError):
    """The requested window overlaps an active appointment."""


class InvalidTransition(SchedulingError):
    """The status change is not allowed from the current status."""

    def __init__(self, detail: str, current_status: str | None = None, requested_status: str | None = None):
        super().__init__(detail)
        self.current_status = current_status
        self.requested_status = requested_status


class NotFound(SchedulingError):
    """A referenced practitioner, patient or appointment does not exist."""


class AccessDenied(SchedulingError):
    pass
