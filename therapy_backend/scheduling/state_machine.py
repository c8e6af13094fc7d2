"""Appointment status transitions."""

from therapy_backend.core.errors import InvalidTransition
from therapy_backend.models.appointment import AppointmentStatus

TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.scheduled: frozenset({
        AppointmentStatus.confirmed,
        AppointmentStatus.cancelled,
        AppointmentStatus.no_show,
    }),
    AppointmentStatus.confirmed: frozenset({
        AppointmentStatus.in_progress,
        AppointmentStatus.cancelled,
        AppointmentStatus.no_show,
    }),
    AppointmentStatus.in_progress: frozenset({AppointmentStatus.completed}),
    AppointmentStatus.completed: frozenset(),
    AppointmentStatus.cancelled: frozenset(),
    AppointmentStatus.no_show: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)


def is_terminal(status: AppointmentStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def check_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    if can_transition(current, target):
        return

    if is_terminal(current):
        detail = f'Appointment is already {current.value} and cannot change status.'
    else:
        allowed = ', '.join(sorted(status.value for status in TRANSITIONS[current]))
        detail = f'Cannot change status from {current.value} to {target.value}. Allowed: {allowed}.'

    raise InvalidTransition(detail, current_status=current.value, requested_status=target.value)
