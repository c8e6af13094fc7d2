"""Emit reminder events for every due, unsent appointment reminder.

Usage:
    python -m therapy_backend.send_due_reminders
"""
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from therapy_backend.core import config
from therapy_backend.database import SessionLocal
from therapy_backend.models import appointment, notification, patient, practitioner, user  # noqa: F401
from therapy_backend.routes.appointment_routes import build_lifecycle
from therapy_backend.services.reminders import dispatch_due_reminders

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(level=config.LOG_LEVEL)
    dispatcher = build_lifecycle().dispatcher

    db = SessionLocal()
    try:
        sweep = dispatch_due_reminders(db, dispatcher)
    except SQLAlchemyError:
        logger.exception("Reminder sweep failed.")
        sys.exit(1)
    finally:
        db.close()

    print(f"Dispatched {sweep.processed} reminder(s).")
    for warning in sweep.warnings:
        print(f"Warning: {warning}")


if __name__ == "__main__":
    main()
