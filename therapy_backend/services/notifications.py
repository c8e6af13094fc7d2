"""
Notification collaborator.

Subscribes to lifecycle events, stores an in-app notification record for
each one and hands it to a delivery hook. Transport (email, SMS, push) is
pluggable; the default hook only logs what would be sent.
"""

import logging
from typing import Callable

from sqlalchemy.orm import Session, sessionmaker

from therapy_backend.models.appointment import AppointmentStatus
from therapy_backend.models.notification import Notification
from therapy_backend.services.events import EventType, LifecycleEvent

logger = logging.getLogger(__name__)

DeliveryHook = Callable[[Notification, LifecycleEvent], None]

PRIORITIES = {
    EventType.appointment_confirmation: 'high',
    EventType.appointment_cancellation: 'high',
    EventType.feedback_request: 'low',
    EventType.appointment_reminder: 'medium',
}


def _therapy_label(event: LifecycleEvent) -> str:
    return str(event.metadata.get('therapy_type', 'therapy')).replace('-', ' ')


def compose_message(event: LifecycleEvent) -> tuple[str, str]:
    """Return the (title, message) pair shown to the recipient."""
    therapy = _therapy_label(event)
    when = f"{event.metadata.get('scheduled_date', '')} at {event.metadata.get('start_time', '')}".strip()

    if event.type is EventType.appointment_cancellation:
        reason = event.metadata.get('cancellation_reason')
        message = f'Your {therapy} appointment on {when} has been cancelled.'
        if reason:
            message = f'{message} Reason: {reason}'
        return 'Appointment Cancelled', message

    if event.type is EventType.feedback_request:
        return 'How was your session?', f'Please share feedback on your {therapy} session from {when}.'

    if event.type is EventType.appointment_reminder:
        return 'Appointment Reminder', f'Reminder: your {therapy} appointment is on {when}.'

    if event.from_status is None:
        return 'Appointment Confirmed', f'Your {therapy} appointment has been scheduled for {when}.'

    status = AppointmentStatus(event.to_status).value.replace('-', ' ')
    return f'Appointment {status}', f'Your appointment has been {status}.'


def channels_for(event: LifecycleEvent) -> list[dict]:
    if event.type is EventType.appointment_reminder:
        names = [event.metadata.get('channel', 'email')]
    else:
        names = ['email', 'in-app']
    return [{'type': name, 'sent': False} for name in names]


def log_delivery(notification: Notification, event: LifecycleEvent) -> None:
    for channel in notification.channels or []:
        logger.info(
            'Queued %s notification "%s" for user %s (appointment %s)',
            channel['type'],
            notification.title,
            notification.recipient_id,
            event.appointment_id,
        )


class NotificationService:
    def __init__(self, session_factory: sessionmaker | Callable[[], Session], deliver: DeliveryHook | None = None):
        self.session_factory = session_factory
        self.deliver = deliver or log_delivery

    def __call__(self, event: LifecycleEvent) -> None:
        self.handle(event)

    def handle(self, event: LifecycleEvent) -> Notification:
        title, message = compose_message(event)
        notification = Notification(
            recipient_id=event.recipient,
            appointment_id=event.appointment_id,
            type=event.type.value,
            title=title,
            message=message,
            priority=PRIORITIES[event.type],
            channels=channels_for(event),
            data={
                'from_status': event.from_status,
                'to_status': event.to_status,
                'occurred_at': event.occurred_at.isoformat(),
                **event.metadata,
            },
        )

        db = self.session_factory()
        try:
            db.add(notification)
            db.commit()
            db.refresh(notification)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        self.deliver(notification, event)
        return notification
