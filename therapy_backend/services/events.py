"""
Lifecycle events and their dispatch.

Events are published after the state change they describe has been
committed. A failing subscriber is logged and reported back as a warning;
it never undoes the committed change.
"""

import enum
import logging
from datetime import datetime
from typing import Any, Callable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    appointment_confirmation = 'appointment_confirmation'
    appointment_cancellation = 'appointment_cancellation'
    feedback_request = 'feedback_request'
    appointment_reminder = 'appointment_reminder'


class LifecycleEvent(BaseModel):
    appointment_id: int
    type: EventType
    from_status: str | None = None
    to_status: str
    recipient: int | None = None
    occurred_at: datetime = Field(default_factory=datetime.now)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def payload(self) -> dict[str, Any]:
        return self.metadata


EventHandler = Callable[[LifecycleEvent], None]


class EventDispatcher:
    def __init__(self, handlers: list[EventHandler] | None = None):
        self._handlers: list[EventHandler] = list(handlers or [])

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def publish(self, event: LifecycleEvent) -> list[str]:
        """Deliver ``event`` to every handler and return one warning per failure."""
        warnings: list[str] = []
        for handler in self._handlers:
            try:
                handler(event)
            except Exception:
                handler_name = getattr(handler, '__qualname__', repr(handler))
                logger.exception(
                    'Lifecycle event %s for appointment %s failed in %s',
                    event.type.value,
                    event.appointment_id,
                    handler_name,
                )
                warnings.append(f'{event.type.value} notification could not be sent.')
        return warnings
