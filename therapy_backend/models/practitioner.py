"""Practitioner model definitions."""

from copy import deepcopy

from sqlalchemy import JSON, Column, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from therapy_backend.core import config
from therapy_backend.database import Base
from therapy_backend.models.user import User
from therapy_backend.scheduling.slots import WEEKDAYS

DEFAULT_WEEKLY_AVAILABILITY = {
    day: {'start': '10:00', 'end': '17:00', 'isAvailable': day not in ('saturday', 'sunday')}
    for day in WEEKDAYS
}


def default_availability() -> dict:
    return deepcopy(DEFAULT_WEEKLY_AVAILABILITY)


class Practitioner(Base):
    """Practitioner profile with the weekly template used for slot generation."""
    __tablename__ = "practitioners"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    license_number = Column(String, unique=True)
    specialization = Column(JSON, default=list)
    availability = Column(JSON, default=default_availability, nullable=False)
    session_duration = Column(Integer, default=lambda: config.DEFAULT_SESSION_DURATION_MINUTES, nullable=False)
    break_time = Column(Integer, default=lambda: config.DEFAULT_BREAK_MINUTES, nullable=False)
    consultation_fee = Column(Float, default=0.0, nullable=False)
    status = Column(String, default='active', nullable=False)  # active/inactive/suspended

    user = relationship(User)
