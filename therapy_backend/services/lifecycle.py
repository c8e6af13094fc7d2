"""
Appointment lifecycle.

Owns booking admission control, the status state machine and the lifecycle
events emitted for each committed change. Every write happens in a single
database transaction; events are published only after that transaction has
committed.
"""

import logging
from datetime import date, datetime, time, timedelta
from threading import Lock
from typing import NamedTuple
from weakref import WeakValueDictionary

from pydantic import BaseModel, field_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from therapy_backend.core import config
from therapy_backend.core.errors import (
    InvalidTransition,
    NotFound,
    SchedulingError,
    SlotConflict,
    ValidationError,
)
from therapy_backend.models.appointment import (
    ACTIVE_STATUSES,
    ActorRole,
    Appointment,
    AppointmentStatus,
    TherapyType,
)
from therapy_backend.models.patient import Patient
from therapy_backend.models.practitioner import Practitioner
from therapy_backend.scheduling.slots import (
    Interval,
    SessionPolicy,
    TimeSlot,
    WeeklyAvailability,
    generate_slots,
    overlaps,
    parse_time_of_day,
)
from therapy_backend.scheduling.state_machine import check_transition
from therapy_backend.services.events import EventDispatcher, EventType, LifecycleEvent
from therapy_backend.services.reminders import build_reminders

logger = logging.getLogger(__name__)
booking_logger = logging.getLogger('therapy_backend.bookings')

STATUS_EVENT_TYPES = {
    AppointmentStatus.cancelled: EventType.appointment_cancellation,
    AppointmentStatus.completed: EventType.feedback_request,
}


class BookingRequest(BaseModel):
    patient_id: int
    practitioner_id: int
    therapy_type: str
    scheduled_date: date
    start_time: time
    end_time: time
    duration: int | None = None
    cost: float | None = None
    notes: str | None = None
    pre_session_instructions: str | None = None
    post_session_instructions: str | None = None

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def parse_time(cls, value):
        return parse_time_of_day(value)


class AppointmentChanges(BaseModel):
    scheduled_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    duration: int | None = None
    notes: str | None = None
    pre_session_instructions: str | None = None
    post_session_instructions: str | None = None

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def parse_time(cls, value):
        return parse_time_of_day(value)

    @property
    def reschedules(self) -> bool:
        return any(
            value is not None
            for value in (self.scheduled_date, self.start_time, self.end_time, self.duration)
        )


class LifecycleResult(NamedTuple):
    appointment: Appointment
    event: LifecycleEvent | None
    warnings: list[str]


# Entries disappear once no caller references the lock.
_booking_locks: WeakValueDictionary = WeakValueDictionary()
_booking_locks_guard = Lock()


def booking_lock(practitioner_id: int, scheduled_date: date) -> Lock:
    with _booking_locks_guard:
        key = (practitioner_id, scheduled_date)
        lock = _booking_locks.get(key)
        if lock is None:
            lock = _booking_locks[key] = Lock()
        return lock


def actor_role(actor) -> str:
    try:
        return ActorRole(getattr(actor, 'role', None)).value
    except ValueError:
        return ActorRole.system.value


def parse_status(value) -> AppointmentStatus:
    try:
        return AppointmentStatus(value.strip().lower() if isinstance(value, str) else value)
    except ValueError as exc:
        raise ValidationError(f'Invalid appointment status: {value!r}.') from exc


def parse_therapy_type(value) -> TherapyType:
    try:
        return TherapyType(value.strip().lower() if isinstance(value, str) else value)
    except ValueError as exc:
        raise ValidationError(f'Invalid therapy type: {value!r}.') from exc


def window_minutes(start: time, end: time) -> int:
    delta = datetime.combine(date.min, end) - datetime.combine(date.min, start)
    return int(delta.total_seconds() // 60)


def validate_window(start: time, end: time, duration: int | None) -> int:
    if end <= start:
        raise ValidationError('End time must be after start time.')

    minutes = window_minutes(start, end)
    if duration is not None and duration != minutes:
        raise ValidationError(f'Duration of {duration} minutes does not match the {minutes} minute window.')
    if minutes < config.MIN_APPOINTMENT_DURATION_MINUTES:
        raise ValidationError(
            f'Appointments must last at least {config.MIN_APPOINTMENT_DURATION_MINUTES} minutes.'
        )
    return minutes


def session_policy_for(practitioner: Practitioner) -> SessionPolicy:
    try:
        return SessionPolicy(
            session_duration=practitioner.session_duration,
            break_time=practitioner.break_time,
        )
    except PydanticValidationError as exc:
        raise ValidationError(f'Practitioner {practitioner.id} has an invalid session policy.') from exc


def weekly_availability_for(practitioner: Practitioner) -> WeeklyAvailability:
    try:
        return WeeklyAvailability.model_validate(practitioner.availability or {})
    except PydanticValidationError as exc:
        raise ValidationError(f'Practitioner {practitioner.id} has an invalid availability template.') from exc


def active_intervals(
    db: Session,
    practitioner_id: int,
    scheduled_date: date,
    exclude_appointment_id: int | None = None,
) -> list[Interval]:
    query = db.query(Appointment.start_time, Appointment.end_time).filter(
        Appointment.practitioner_id == practitioner_id,
        Appointment.scheduled_date == scheduled_date,
        Appointment.status.in_(ACTIVE_STATUSES),
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)

    return [Interval(start, end) for start, end in query.order_by(Appointment.start_time.asc()).all()]


def _event_metadata(appointment: Appointment) -> dict:
    return {
        'patient_id': appointment.patient_id,
        'practitioner_id': appointment.practitioner_id,
        'therapy_type': appointment.therapy_type,
        'scheduled_date': appointment.scheduled_date.isoformat(),
        'start_time': appointment.start_time.strftime('%H:%M'),
        'end_time': appointment.end_time.strftime('%H:%M'),
    }


class AppointmentLifecycle:
    def __init__(self, dispatcher: EventDispatcher | None = None):
        self.dispatcher = dispatcher or EventDispatcher()

    def list_available_slots(self, db: Session, practitioner_id: int, scheduled_date: date) -> list[TimeSlot]:
        practitioner = db.get(Practitioner, practitioner_id)
        if practitioner is None:
            raise NotFound('Practitioner not found.')

        return generate_slots(
            weekly_availability_for(practitioner),
            session_policy_for(practitioner),
            scheduled_date,
            active_intervals(db, practitioner_id, scheduled_date),
        )

    def book_appointment(self, db: Session, request: BookingRequest, actor=None) -> LifecycleResult:
        therapy_type = parse_therapy_type(request.therapy_type)
        duration = validate_window(request.start_time, request.end_time, request.duration)
        if request.cost is not None and request.cost < 0:
            raise ValidationError('Cost cannot be negative.')

        patient = db.get(Patient, request.patient_id)
        if patient is None:
            raise NotFound('Patient not found.')

        with booking_lock(request.practitioner_id, request.scheduled_date):
            try:
                practitioner = (
                    db.query(Practitioner)
                    .filter(Practitioner.id == request.practitioner_id)
                    .with_for_update()
                    .first()
                )
                if practitioner is None:
                    raise NotFound('Practitioner not found.')

                booked = active_intervals(db, practitioner.id, request.scheduled_date)
                if any(overlaps(request.start_time, request.end_time, b.start, b.end) for b in booked):
                    raise SlotConflict('Time slot is already booked.')

                appointment = Appointment(
                    patient_id=patient.id,
                    practitioner_id=practitioner.id,
                    therapy_type=therapy_type.value,
                    scheduled_date=request.scheduled_date,
                    start_time=request.start_time,
                    end_time=request.end_time,
                    duration=duration,
                    status=AppointmentStatus.scheduled.value,
                    cost=request.cost if request.cost is not None else practitioner.consultation_fee,
                    notes=request.notes,
                    pre_session_instructions=request.pre_session_instructions,
                    post_session_instructions=request.post_session_instructions,
                )
                appointment.reminders = build_reminders(appointment.starts_at)
                db.add(appointment)
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise SlotConflict('Time slot is already booked.') from exc
            except (SchedulingError, SQLAlchemyError):
                db.rollback()
                raise

        db.refresh(appointment)
        booking_logger.info(
            'Booking %s: patient=%s practitioner=%s therapy=%s date=%s time=%s-%s cost=%s status=%s actor=%s',
            appointment.id,
            appointment.patient_id,
            appointment.practitioner_id,
            appointment.therapy_type,
            appointment.scheduled_date.isoformat(),
            appointment.start_time.strftime('%H:%M'),
            appointment.end_time.strftime('%H:%M'),
            appointment.cost,
            appointment.status,
            actor_role(actor),
        )

        event = LifecycleEvent(
            appointment_id=appointment.id,
            type=EventType.appointment_confirmation,
            from_status=None,
            to_status=appointment.status,
            recipient=patient.user_id,
            metadata=_event_metadata(appointment),
        )
        return LifecycleResult(appointment, event, self.dispatcher.publish(event))

    def transition_status(
        self,
        db: Session,
        appointment_id: int,
        new_status,
        reason: str | None = None,
        actor=None,
    ) -> LifecycleResult:
        target = parse_status(new_status)

        appointment = db.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFound('Appointment not found.')

        current = AppointmentStatus(appointment.status)
        check_transition(current, target)

        now = datetime.now()
        values = {'status': target.value, 'updated_at': now}
        if target is AppointmentStatus.cancelled:
            values.update(
                cancellation_reason=(reason or '').strip() or config.DEFAULT_CANCELLATION_REASON,
                cancelled_by=actor_role(actor),
                cancelled_at=now,
            )

        try:
            updated = (
                db.query(Appointment)
                .filter(Appointment.id == appointment_id, Appointment.status == current.value)
                .update(values, synchronize_session=False)
            )
            if updated != 1:
                db.rollback()
                raise InvalidTransition(
                    f'Appointment status changed to {appointment.status} before it could become {target.value}.',
                    current_status=appointment.status,
                    requested_status=target.value,
                )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise

        db.refresh(appointment)
        logger.info('Appointment %s: %s -> %s', appointment.id, current.value, target.value)

        metadata = _event_metadata(appointment)
        if target is AppointmentStatus.cancelled:
            metadata.update(
                cancellation_reason=appointment.cancellation_reason,
                cancelled_by=appointment.cancelled_by,
            )

        event = LifecycleEvent(
            appointment_id=appointment.id,
            type=STATUS_EVENT_TYPES.get(target, EventType.appointment_confirmation),
            from_status=current.value,
            to_status=target.value,
            recipient=appointment.patient.user_id if appointment.patient else None,
            occurred_at=now,
            metadata=metadata,
        )
        return LifecycleResult(appointment, event, self.dispatcher.publish(event))

    def cancel_appointment(
        self,
        db: Session,
        appointment_id: int,
        reason: str | None = None,
        actor=None,
    ) -> LifecycleResult:
        return self.transition_status(db, appointment_id, AppointmentStatus.cancelled, reason=reason, actor=actor)

    def update_appointment(self, db: Session, appointment_id: int, changes: AppointmentChanges) -> Appointment:
        """Edit notes and instructions, or move an active appointment to a new window.

        Moving is admission-controlled like a new booking but is not a status
        change, so no lifecycle event is emitted.
        """
        appointment = db.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFound('Appointment not found.')

        for field in ('notes', 'pre_session_instructions', 'post_session_instructions'):
            value = getattr(changes, field)
            if value is not None:
                setattr(appointment, field, value)

        if not changes.reschedules:
            try:
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise
            db.refresh(appointment)
            return appointment

        if not appointment.is_active:
            db.rollback()
            raise InvalidTransition(
                f'Only scheduled or confirmed appointments can be rescheduled, not {appointment.status}.',
                current_status=appointment.status,
            )

        scheduled_date = changes.scheduled_date or appointment.scheduled_date
        start = changes.start_time or appointment.start_time
        end = changes.end_time
        if end is None:
            minutes = changes.duration or appointment.duration
            end_at = datetime.combine(scheduled_date, start) + timedelta(minutes=minutes)
            if end_at.date() != scheduled_date:
                db.rollback()
                raise ValidationError('Appointment cannot run past midnight.')
            end = end_at.time()

        try:
            duration = validate_window(start, end, changes.duration)
        except ValidationError:
            db.rollback()
            raise

        with booking_lock(appointment.practitioner_id, scheduled_date):
            try:
                db.query(Practitioner).filter(Practitioner.id == appointment.practitioner_id).with_for_update().first()

                booked = active_intervals(
                    db,
                    appointment.practitioner_id,
                    scheduled_date,
                    exclude_appointment_id=appointment.id,
                )
                if any(overlaps(start, end, b.start, b.end) for b in booked):
                    raise SlotConflict('Time slot is already booked.')

                window = {
                    'scheduled_date': scheduled_date,
                    'start_time': start,
                    'end_time': end,
                    'duration': duration,
                }
                moved = (
                    db.query(Appointment)
                    .filter(Appointment.id == appointment.id, Appointment.status.in_(ACTIVE_STATUSES))
                    .update({**window, 'updated_at': datetime.now()}, synchronize_session=False)
                )
                if moved != 1:
                    db.rollback()
                    raise InvalidTransition(
                        f'Only scheduled or confirmed appointments can be rescheduled, not {appointment.status}.',
                        current_status=appointment.status,
                    )

                for field, value in window.items():
                    setattr(appointment, field, value)
                appointment.reminders = [reminder for reminder in appointment.reminders if reminder.sent]
                appointment.reminders.extend(build_reminders(appointment.starts_at))
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise SlotConflict('Time slot is already booked.') from exc
            except (SchedulingError, SQLAlchemyError):
                db.rollback()
                raise

        db.refresh(appointment)
        logger.info(
            'Appointment %s rescheduled to %s %s-%s',
            appointment.id,
            appointment.scheduled_date.isoformat(),
            appointment.start_time.strftime('%H:%M'),
            appointment.end_time.strftime('%H:%M'),
        )
        return appointment
