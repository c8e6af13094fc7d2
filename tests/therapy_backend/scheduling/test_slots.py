from datetime import date, time, timedelta, datetime

import pytest
from pydantic import ValidationError

from therapy_backend.scheduling.slots import (
    DayAvailability,
    Interval,
    SessionPolicy,
    TimeSlot,
    WeeklyAvailability,
    generate_slots,
    iter_slots,
    overlaps,
    parse_time_of_day,
)

MONDAY = date(2024, 1, 1)
TUESDAY = date(2024, 1, 2)
SATURDAY = date(2024, 1, 6)


def _availability(**days) -> WeeklyAvailability:
    return WeeklyAvailability.model_validate(days)


def _window(start: str, end: str) -> Interval:
    return Interval(time.fromisoformat(start), time.fromisoformat(end))


def _starts(slots: list[TimeSlot]) -> list[str]:
    return [slot.start_time.strftime('%H:%M') for slot in slots]


MORNING = _availability(monday={'start': '10:00', 'end': '12:00', 'isAvailable': True})


def test_day_availability_parses_hours_and_alias() -> None:
    day = DayAvailability.model_validate({'start': '09:30', 'end': '17:00', 'isAvailable': True})

    assert day.start == time(9, 30)
    assert day.end == time(17, 0)
    assert day.is_available is True


def test_day_availability_rejects_malformed_time() -> None:
    with pytest.raises(ValidationError):
        DayAvailability.model_validate({'start': 'nine', 'end': '17:00', 'isAvailable': True})


def test_session_policy_requires_positive_duration() -> None:
    with pytest.raises(ValidationError):
        SessionPolicy(session_duration=0, break_time=0)

    with pytest.raises(ValidationError):
        SessionPolicy(session_duration=30, break_time=-5)


def test_two_hour_morning_yields_two_hourly_slots() -> None:
    slots = generate_slots(MORNING, SessionPolicy(session_duration=60, break_time=0), MONDAY, [])

    assert slots == [
        TimeSlot(time(10, 0), time(11, 0), 60, True),
        TimeSlot(time(11, 0), time(12, 0), 60, True),
    ]


def test_booked_first_hour_leaves_second_slot() -> None:
    slots = generate_slots(
        MORNING,
        SessionPolicy(session_duration=60, break_time=0),
        MONDAY,
        [_window('10:00', '11:00')],
    )

    assert slots == [TimeSlot(time(11, 0), time(12, 0), 60, True)]


@pytest.mark.parametrize(
    'booked',
    [
        [],
        [_window('10:00', '11:00')],
        [_window('00:00', '23:59')],
    ],
)
def test_unavailable_day_is_always_empty(booked: list[Interval]) -> None:
    availability = _availability(
        monday={'start': '10:00', 'end': '12:00', 'isAvailable': False},
    )

    assert generate_slots(availability, SessionPolicy(session_duration=30), MONDAY, booked) == []


def test_missing_weekday_is_empty() -> None:
    assert generate_slots(MORNING, SessionPolicy(session_duration=30), SATURDAY, []) == []


def test_zero_length_day_is_empty() -> None:
    availability = _availability(monday={'start': '10:00', 'end': '10:00', 'isAvailable': True})

    assert generate_slots(availability, SessionPolicy(session_duration=15), MONDAY, []) == []


def test_session_longer_than_day_is_empty() -> None:
    assert generate_slots(MORNING, SessionPolicy(session_duration=180), MONDAY, []) == []


def test_no_partial_trailing_slot() -> None:
    slots = generate_slots(MORNING, SessionPolicy(session_duration=45, break_time=0), MONDAY, [])

    assert _starts(slots) == ['10:00', '10:45']
    assert slots[-1].end_time == time(11, 30)


def test_break_time_separates_slots() -> None:
    availability = _availability(tuesday={'start': '09:00', 'end': '13:00', 'isAvailable': True})

    slots = generate_slots(availability, SessionPolicy(session_duration=90, break_time=15), TUESDAY, [])

    assert [(slot.start_time, slot.end_time) for slot in slots] == [
        (time(9, 0), time(10, 30)),
        (time(10, 45), time(12, 15)),
    ]


def test_conflict_does_not_repack_the_grid() -> None:
    availability = _availability(monday={'start': '09:00', 'end': '12:00', 'isAvailable': True})

    slots = generate_slots(
        availability,
        SessionPolicy(session_duration=60, break_time=15),
        MONDAY,
        [_window('09:30', '10:00')],
    )

    # 09:00 is dropped; the walk still resumes at 10:15 rather than 10:00.
    assert _starts(slots) == ['10:15']


def test_flush_adjacent_booking_does_not_exclude() -> None:
    slots = generate_slots(
        MORNING,
        SessionPolicy(session_duration=60, break_time=0),
        MONDAY,
        [_window('09:00', '10:00'), _window('12:00', '13:00')],
    )

    assert _starts(slots) == ['10:00', '11:00']


def test_overlapping_booked_entries_are_harmless() -> None:
    booked = [_window('10:00', '11:00'), _window('10:15', '10:45'), _window('10:00', '11:00')]

    slots = generate_slots(MORNING, SessionPolicy(session_duration=60, break_time=0), MONDAY, booked)

    assert _starts(slots) == ['11:00']


@pytest.mark.parametrize(
    ('duration', 'break_time'),
    [(15, 0), (30, 10), (45, 15), (50, 5), (90, 15)],
)
def test_generated_slots_never_overlap_and_follow_the_walk(duration: int, break_time: int) -> None:
    availability = _availability(tuesday={'start': '08:00', 'end': '18:00', 'isAvailable': True})
    booked = [_window('09:10', '09:40'), _window('13:00', '14:30')]

    slots = generate_slots(
        availability,
        SessionPolicy(session_duration=duration, break_time=break_time),
        TUESDAY,
        booked,
    )

    assert slots
    for slot in slots:
        assert slot.duration == duration
        start = datetime.combine(TUESDAY, slot.start_time)
        end = datetime.combine(TUESDAY, slot.end_time)
        assert end - start == timedelta(minutes=duration)
        assert not any(overlaps(slot.start_time, slot.end_time, b.start, b.end) for b in booked)
        # Every slot sits on the fixed grid of the walk.
        offset = (start - datetime.combine(TUESDAY, time(8, 0))).total_seconds() / 60
        assert offset % (duration + break_time) == 0

    for previous, current in zip(slots, slots[1:]):
        assert previous.end_time <= current.start_time


def test_iter_slots_is_restartable() -> None:
    policy = SessionPolicy(session_duration=30, break_time=0)

    assert list(iter_slots(MORNING, policy, MONDAY)) == list(iter_slots(MORNING, policy, MONDAY))


@pytest.mark.parametrize(
    ('a', 'b', 'expected'),
    [
        (('10:00', '11:00'), ('10:30', '11:30'), True),
        (('10:00', '11:00'), ('11:00', '12:00'), False),
        (('10:00', '11:00'), ('09:00', '10:00'), False),
        (('10:00', '12:00'), ('10:30', '11:00'), True),
    ],
)
def test_overlaps_uses_half_open_intervals(a, b, expected: bool) -> None:
    a_window, b_window = _window(*a), _window(*b)

    assert overlaps(a_window.start, a_window.end, b_window.start, b_window.end) is expected


def test_parse_time_of_day_accepts_strings_and_times() -> None:
    assert parse_time_of_day(' 07:05 ') == time(7, 5)
    assert parse_time_of_day(time(18, 0)) == time(18, 0)

    with pytest.raises(ValueError, match='Times must use the HH:MM format.'):
        parse_time_of_day('7pm')
