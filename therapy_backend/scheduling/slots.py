"""
Slot generation.

Walks a practitioner's working day from its start time and proposes
fixed-length sessions separated by the practitioner's break. A candidate
that overlaps any booked interval is dropped, but the walk still advances
past it, so the slot grid for a day never shifts because of a booking.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')


class Interval(NamedTuple):
    """Half-open [start, end) time-of-day window."""
    start: time
    end: time


class TimeSlot(NamedTuple):
    start_time: time
    end_time: time
    duration: int
    is_available: bool = True


def parse_time_of_day(value):
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip(), '%H:%M').time()
        except ValueError as exc:
            raise ValueError('Times must use the HH:MM format.') from exc
    return value


class DayAvailability(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start: time
    end: time
    is_available: bool = Field(default=False, alias='isAvailable')

    @field_validator('start', 'end', mode='before')
    @classmethod
    def parse_time(cls, value):
        return parse_time_of_day(value)


class WeeklyAvailability(BaseModel):
    monday: DayAvailability | None = None
    tuesday: DayAvailability | None = None
    wednesday: DayAvailability | None = None
    thursday: DayAvailability | None = None
    friday: DayAvailability | None = None
    saturday: DayAvailability | None = None
    sunday: DayAvailability | None = None

    def for_date(self, day: date) -> DayAvailability | None:
        return getattr(self, WEEKDAYS[day.weekday()])


class SessionPolicy(BaseModel):
    session_duration: int = Field(gt=0)
    break_time: int = Field(default=0, ge=0)


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    """Open-interval overlap test shared by slot generation and booking."""
    return a_start < b_end and a_end > b_start


def iter_slots(
    availability: WeeklyAvailability,
    policy: SessionPolicy,
    day: date,
    booked: Iterable[Interval] = (),
) -> Iterator[TimeSlot]:
    day_availability = availability.for_date(day)
    if day_availability is None or not day_availability.is_available:
        return

    booked_windows = [
        (datetime.combine(day, interval.start), datetime.combine(day, interval.end))
        for interval in booked
    ]

    session_length = timedelta(minutes=policy.session_duration)
    break_length = timedelta(minutes=policy.break_time)
    end_of_day = datetime.combine(day, day_availability.end)
    current = datetime.combine(day, day_availability.start)

    while current < end_of_day:
        session_end = current + session_length
        if session_end > end_of_day:
            break

        is_booked = any(
            overlaps(current, session_end, booked_start, booked_end)
            for booked_start, booked_end in booked_windows
        )
        if not is_booked:
            yield TimeSlot(
                start_time=current.time(),
                end_time=session_end.time(),
                duration=policy.session_duration,
            )

        current = session_end + break_length


def generate_slots(
    availability: WeeklyAvailability,
    policy: SessionPolicy,
    day: date,
    booked: Iterable[Interval] = (),
) -> list[TimeSlot]:
    """Return the open slots of ``day`` in ascending start order."""
    return list(iter_slots(availability, policy, day, booked))
