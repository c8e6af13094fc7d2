"""Appointment reminders: creation at booking time and the due-reminder sweep."""

import logging
from datetime import datetime, timedelta
from typing import NamedTuple

from sqlalchemy.orm import Session

from therapy_backend.core import config
from therapy_backend.models.appointment import (
    ACTIVE_STATUSES,
    Appointment,
    Reminder,
    ReminderChannel,
)
from therapy_backend.services.events import EventDispatcher, EventType, LifecycleEvent

logger = logging.getLogger(__name__)


class ReminderSweep(NamedTuple):
    processed: int
    warnings: list[str]


def reminder_offsets() -> tuple[tuple[ReminderChannel, timedelta], ...]:
    return (
        (ReminderChannel.email, timedelta(hours=config.EMAIL_REMINDER_HOURS_BEFORE)),
        (ReminderChannel.sms, timedelta(hours=config.SMS_REMINDER_HOURS_BEFORE)),
    )


def build_reminders(session_start: datetime) -> list[Reminder]:
    return [
        Reminder(channel=channel.value, scheduled_time=session_start - offset, sent=False)
        for channel, offset in reminder_offsets()
    ]


def collect_due_reminders(db: Session, now: datetime) -> list[Reminder]:
    return (
        db.query(Reminder)
        .join(Appointment, Reminder.appointment_id == Appointment.id)
        .filter(
            Reminder.sent.is_(False),
            Reminder.scheduled_time <= now,
            Appointment.status.in_(ACTIVE_STATUSES),
        )
        .order_by(Reminder.scheduled_time.asc())
        .all()
    )


def dispatch_due_reminders(db: Session, dispatcher: EventDispatcher, now: datetime | None = None) -> ReminderSweep:
    """Emit one reminder event per due reminder and mark it sent.

    Returns how many reminders were processed and the delivery warnings
    collected from the dispatcher.
    """
    now = now or datetime.now()
    due = collect_due_reminders(db, now)
    warnings: list[str] = []

    for reminder in due:
        reminder.sent = True
        reminder.sent_at = now
    db.commit()

    for reminder in due:
        appointment = reminder.appointment
        event = LifecycleEvent(
            appointment_id=appointment.id,
            type=EventType.appointment_reminder,
            from_status=appointment.status,
            to_status=appointment.status,
            recipient=appointment.patient.user_id if appointment.patient else None,
            occurred_at=now,
            metadata={
                'channel': reminder.channel,
                'therapy_type': appointment.therapy_type,
                'scheduled_date': appointment.scheduled_date.isoformat(),
                'start_time': appointment.start_time.strftime('%H:%M'),
            },
        )
        warnings.extend(dispatcher.publish(event))

    if due:
        logger.info('Dispatched %d due reminders', len(due))
    if warnings:
        logger.warning('%d reminder notifications could not be delivered', len(warnings))
    return ReminderSweep(len(due), warnings)
