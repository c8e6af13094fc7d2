"""Appointment model definitions."""

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    text,
)
from sqlalchemy.orm import relationship

from therapy_backend.database import ACTIVE_SLOT_INDEX_NAME, ACTIVE_STATUS_SQL, Base
from therapy_backend.models.patient import Patient
from therapy_backend.models.practitioner import Practitioner


class TherapyType(str, enum.Enum):
    abhyanga = 'abhyanga'
    shirodhara = 'shirodhara'
    basti = 'basti'
    nasya = 'nasya'
    virechana = 'virechana'
    rakta_mokshana = 'rakta-mokshana'
    consultation = 'consultation'


class AppointmentStatus(str, enum.Enum):
    scheduled = 'scheduled'
    confirmed = 'confirmed'
    in_progress = 'in-progress'
    completed = 'completed'
    cancelled = 'cancelled'
    no_show = 'no-show'


class PaymentStatus(str, enum.Enum):
    pending = 'pending'
    paid = 'paid'
    partial = 'partial'
    refunded = 'refunded'


class ReminderChannel(str, enum.Enum):
    email = 'email'
    sms = 'sms'
    in_app = 'in-app'


class ActorRole(str, enum.Enum):
    patient = 'patient'
    practitioner = 'practitioner'
    admin = 'admin'
    system = 'system'


# Statuses that hold a practitioner's time.
ACTIVE_STATUSES = (AppointmentStatus.scheduled.value, AppointmentStatus.confirmed.value)


class Appointment(Base):
    """Represents a booked therapy session."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            ACTIVE_SLOT_INDEX_NAME,
            'practitioner_id',
            'scheduled_date',
            'start_time',
            unique=True,
            sqlite_where=text(ACTIVE_STATUS_SQL),
            postgresql_where=text(ACTIVE_STATUS_SQL),
        ),
        Index('idx_appointments_practitioner_date', 'practitioner_id', 'scheduled_date'),
        Index('idx_appointments_patient_date', 'patient_id', 'scheduled_date'),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    practitioner_id = Column(Integer, ForeignKey("practitioners.id"), nullable=False)
    therapy_type = Column(String, nullable=False, index=True)
    scheduled_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    duration = Column(Integer, nullable=False)
    status = Column(String, default=AppointmentStatus.scheduled.value, nullable=False, index=True)
    notes = Column(String(1000))
    pre_session_instructions = Column(String(1000))
    post_session_instructions = Column(String(1000))
    cost = Column(Float, nullable=False, default=0.0)
    payment_status = Column(String, default=PaymentStatus.pending.value, nullable=False)
    cancellation_reason = Column(String)
    cancelled_by = Column(String)
    cancelled_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    patient = relationship(Patient)
    practitioner = relationship(Practitioner)
    reminders = relationship(
        "Reminder",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="Reminder.scheduled_time",
    )

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.scheduled_date, self.start_time)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class Reminder(Base):
    """A reminder attached to an appointment at booking time."""
    __tablename__ = "reminders"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    channel = Column(String, nullable=False)
    scheduled_time = Column(DateTime, nullable=False)
    sent = Column(Boolean, default=False, nullable=False)
    sent_at = Column(DateTime)

    appointment = relationship(Appointment, back_populates="reminders")
