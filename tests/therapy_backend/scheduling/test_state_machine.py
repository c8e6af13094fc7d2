import pytest

from therapy_backend.core.errors import InvalidTransition
from therapy_backend.models.appointment import AppointmentStatus
from therapy_backend.scheduling.state_machine import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    can_transition,
    check_transition,
    is_terminal,
)


def test_every_status_has_a_row() -> None:
    assert set(TRANSITIONS) == set(AppointmentStatus)


def test_terminal_statuses() -> None:
    assert TERMINAL_STATUSES == {
        AppointmentStatus.completed,
        AppointmentStatus.cancelled,
        AppointmentStatus.no_show,
    }
    assert not is_terminal(AppointmentStatus.confirmed)


@pytest.mark.parametrize(
    ('current', 'target'),
    [
        (AppointmentStatus.scheduled, AppointmentStatus.confirmed),
        (AppointmentStatus.confirmed, AppointmentStatus.in_progress),
        (AppointmentStatus.in_progress, AppointmentStatus.completed),
        (AppointmentStatus.scheduled, AppointmentStatus.cancelled),
        (AppointmentStatus.confirmed, AppointmentStatus.cancelled),
        (AppointmentStatus.scheduled, AppointmentStatus.no_show),
        (AppointmentStatus.confirmed, AppointmentStatus.no_show),
    ],
)
def test_allowed_transitions(current: AppointmentStatus, target: AppointmentStatus) -> None:
    assert can_transition(current, target)
    check_transition(current, target)


@pytest.mark.parametrize(
    ('current', 'target'),
    [
        (AppointmentStatus.completed, AppointmentStatus.scheduled),
        (AppointmentStatus.cancelled, AppointmentStatus.cancelled),
        (AppointmentStatus.no_show, AppointmentStatus.confirmed),
        (AppointmentStatus.scheduled, AppointmentStatus.completed),
        (AppointmentStatus.scheduled, AppointmentStatus.in_progress),
        (AppointmentStatus.in_progress, AppointmentStatus.cancelled),
        (AppointmentStatus.confirmed, AppointmentStatus.confirmed),
    ],
)
def test_rejected_transitions(current: AppointmentStatus, target: AppointmentStatus) -> None:
    with pytest.raises(InvalidTransition) as exception_info:
        check_transition(current, target)

    assert exception_info.value.current_status == current.value
    assert exception_info.value.requested_status == target.value


def test_terminal_rejection_message() -> None:
    with pytest.raises(InvalidTransition) as exception_info:
        check_transition(AppointmentStatus.completed, AppointmentStatus.scheduled)

    assert exception_info.value.detail == 'Appointment is already completed and cannot change status.'
