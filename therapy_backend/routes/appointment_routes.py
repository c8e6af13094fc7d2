import math
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from therapy_backend.auth.dependencies import get_current_user
from therapy_backend.core import config
from therapy_backend.core.errors import (
    AccessDenied,
    InvalidTransition,
    NotFound,
    SchedulingError,
    SlotConflict,
    ValidationError,
)
from therapy_backend.database import SessionLocal, ensure_appointment_schema, get_db
from therapy_backend.models.appointment import Appointment, AppointmentStatus, TherapyType
from therapy_backend.models.patient import Patient
from therapy_backend.models.practitioner import Practitioner
from therapy_backend.models.user import User
from therapy_backend.scheduling.slots import parse_time_of_day
from therapy_backend.services.events import EventDispatcher
from therapy_backend.services.lifecycle import AppointmentChanges, AppointmentLifecycle, BookingRequest
from therapy_backend.services.notifications import NotificationService

router = APIRouter(tags=['appointments'])

ERROR_STATUS_CODES = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFound: status.HTTP_404_NOT_FOUND,
    AccessDenied: status.HTTP_403_FORBIDDEN,
    SlotConflict: status.HTTP_409_CONFLICT,
    InvalidTransition: status.HTTP_409_CONFLICT,
}

DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def _format_time(value: time) -> str:
    return value.strftime('%H:%M')


class TimeSlotResponse(BaseModel):
    start_time: str
    end_time: str
    duration: int
    is_available: bool


class CreateAppointmentRequest(BaseModel):
    patient_id: int
    practitioner_id: int
    therapy_type: str
    scheduled_date: date
    start_time: time
    end_time: time
    duration: int | None = Field(default=None, ge=config.MIN_APPOINTMENT_DURATION_MINUTES)
    cost: float | None = Field(default=None, ge=0)
    notes: str | None = Field(default=None, max_length=config.MAX_APPOINTMENT_NOTES_LENGTH)
    pre_session_instructions: str | None = Field(default=None, max_length=config.MAX_APPOINTMENT_NOTES_LENGTH)
    post_session_instructions: str | None = Field(default=None, max_length=config.MAX_APPOINTMENT_NOTES_LENGTH)

    @field_validator('therapy_type')
    @classmethod
    def validate_therapy_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {therapy.value for therapy in TherapyType}:
            raise ValueError('Invalid therapy type.')
        return normalized

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def parse_time(cls, value):
        return parse_time_of_day(value)


class UpdateAppointmentRequest(BaseModel):
    scheduled_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    duration: int | None = Field(default=None, ge=config.MIN_APPOINTMENT_DURATION_MINUTES)
    notes: str | None = Field(default=None, max_length=config.MAX_APPOINTMENT_NOTES_LENGTH)
    pre_session_instructions: str | None = Field(default=None, max_length=config.MAX_APPOINTMENT_NOTES_LENGTH)
    post_session_instructions: str | None = Field(default=None, max_length=config.MAX_APPOINTMENT_NOTES_LENGTH)

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def parse_time(cls, value):
        return parse_time_of_day(value)


class UpdateStatusRequest(BaseModel):
    status: str
    cancellation_reason: str | None = Field(default=None, min_length=1)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {appointment_status.value for appointment_status in AppointmentStatus}:
            raise ValueError('Invalid appointment status.')
        return normalized


class ReminderResponse(BaseModel):
    channel: str
    scheduled_time: datetime
    sent: bool
    sent_at: datetime | None = None

    class Config:
        from_attributes = True


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    practitioner_id: int
    therapy_type: str
    scheduled_date: date
    start_time: str
    end_time: str
    duration: int
    status: str
    cost: float
    payment_status: str
    notes: str | None = None
    pre_session_instructions: str | None = None
    post_session_instructions: str | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    reminders: list[ReminderResponse] = []
    warnings: list[str] = []

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def format_time(cls, value):
        if isinstance(value, time):
            return _format_time(value)
        return value

    class Config:
        from_attributes = True


class PaginationResponse(BaseModel):
    current: int
    pages: int
    total: int


class AppointmentListResponse(BaseModel):
    appointments: list[AppointmentResponse]
    pagination: PaginationResponse


class PractitionerResponse(BaseModel):
    id: int
    name: str
    email: str | None = None
    specialization: list[str] = []
    availability: dict
    session_duration: int
    break_time: int
    consultation_fee: float


def build_lifecycle() -> AppointmentLifecycle:
    dispatcher = EventDispatcher()
    if config.NOTIFICATIONS_ENABLED:
        dispatcher.subscribe(NotificationService(SessionLocal))
    return AppointmentLifecycle(dispatcher)


_lifecycle = build_lifecycle()


def get_lifecycle() -> AppointmentLifecycle:
    return _lifecycle


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


def to_http_error(exc: SchedulingError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.detail)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.detail)


def to_response(appointment: Appointment, warnings: list[str] | None = None) -> AppointmentResponse:
    response = AppointmentResponse.model_validate(appointment)
    if warnings:
        response.warnings = list(warnings)
    return response


def patient_profile_for(db: Session, user: User) -> Patient | None:
    return db.query(Patient).filter(Patient.user_id == user.id).first()


def practitioner_profile_for(db: Session, user: User) -> Practitioner | None:
    return db.query(Practitioner).filter(Practitioner.user_id == user.id).first()


def ensure_can_access(db: Session, user: User, appointment: Appointment) -> None:
    if user.role == 'patient':
        patient = patient_profile_for(db, user)
        if patient is None or appointment.patient_id != patient.id:
            raise AccessDenied('Access denied.')
    elif user.role == 'practitioner':
        practitioner = practitioner_profile_for(db, user)
        if practitioner is None or appointment.practitioner_id != practitioner.id:
            raise AccessDenied('Access denied.')


def load_appointment_for(db: Session, user: User, appointment_id: int) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFound('Appointment not found.')
    ensure_can_access(db, user, appointment)
    return appointment


@router.get('/availability', response_model=list[TimeSlotResponse])
def list_available_slots(
    practitioner_id: int = Query(...),
    day: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
):
    ensure_database_ready()

    try:
        slots = lifecycle.list_available_slots(db, practitioner_id, day)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc

    return [
        TimeSlotResponse(
            start_time=_format_time(slot.start_time),
            end_time=_format_time(slot.end_time),
            duration=slot.duration,
            is_available=slot.is_available,
        )
        for slot in slots
    ]


@router.get('/practitioners', response_model=list[PractitionerResponse])
def list_practitioners(db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        practitioners = db.query(Practitioner).filter(
            Practitioner.status == 'active',
        ).order_by(Practitioner.id.asc()).all()

        return [
            PractitionerResponse(
                id=practitioner.id,
                name=practitioner.user.full_name if practitioner.user else '',
                email=practitioner.user.email if practitioner.user else None,
                specialization=practitioner.specialization or [],
                availability=practitioner.availability or {},
                session_duration=practitioner.session_duration,
                break_time=practitioner.break_time,
                consultation_fee=practitioner.consultation_fee,
            )
            for practitioner in practitioners
        ]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/therapy-types', response_model=list[str])
def list_therapy_types():
    return [therapy.value for therapy in TherapyType]


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
):
    ensure_database_ready()

    try:
        if current_user.role == 'patient':
            patient = patient_profile_for(db, current_user)
            if patient is None or patient.id != data.patient_id:
                raise AccessDenied('Patients can only book appointments for themselves.')

        result = lifecycle.book_appointment(
            db,
            BookingRequest(**data.model_dump()),
            actor=current_user,
        )
        return to_response(result.appointment, result.warnings)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('', response_model=AppointmentListResponse)
def list_appointments(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=config.APPOINTMENT_PAGE_SIZE, ge=1, le=100),
    appointment_status: str | None = Query(default=None, alias='status'),
    therapy_type: str | None = Query(default=None),
    practitioner_id: int | None = Query(default=None),
    patient_id: int | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        query = db.query(Appointment)

        if current_user.role == 'patient':
            patient = patient_profile_for(db, current_user)
            if patient is None:
                raise NotFound('Patient profile not found.')
            query = query.filter(Appointment.patient_id == patient.id)
        elif current_user.role == 'practitioner':
            practitioner = practitioner_profile_for(db, current_user)
            if practitioner is None:
                raise NotFound('Practitioner profile not found.')
            query = query.filter(Appointment.practitioner_id == practitioner.id)

        if appointment_status:
            query = query.filter(Appointment.status == appointment_status.strip().lower())
        if therapy_type:
            query = query.filter(Appointment.therapy_type == therapy_type.strip().lower())
        if practitioner_id is not None:
            query = query.filter(Appointment.practitioner_id == practitioner_id)
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        if start_date is not None:
            query = query.filter(Appointment.scheduled_date >= start_date)
        if end_date is not None:
            query = query.filter(Appointment.scheduled_date <= end_date)

        total = query.count()
        appointments = (
            query.order_by(Appointment.scheduled_date.desc(), Appointment.start_time.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        return AppointmentListResponse(
            appointments=[to_response(appointment) for appointment in appointments],
            pagination=PaginationResponse(current=page, pages=math.ceil(total / limit), total=total),
        )
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return to_response(load_appointment_for(db, current_user, appointment_id))
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
):
    ensure_database_ready()

    try:
        load_appointment_for(db, current_user, appointment_id)
        appointment = lifecycle.update_appointment(
            db,
            appointment_id,
            AppointmentChanges(**data.model_dump()),
        )
        return to_response(appointment)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.put('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: UpdateStatusRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
):
    ensure_database_ready()

    try:
        load_appointment_for(db, current_user, appointment_id)
        if current_user.role == 'patient' and data.status != AppointmentStatus.cancelled.value:
            raise AccessDenied('Patients can only cancel their appointments.')

        result = lifecycle.transition_status(
            db,
            appointment_id,
            data.status,
            reason=data.cancellation_reason,
            actor=current_user,
        )
        return to_response(result.appointment, result.warnings)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.delete('/{appointment_id}', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    reason: str | None = Query(default=None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
):
    ensure_database_ready()

    try:
        load_appointment_for(db, current_user, appointment_id)
        result = lifecycle.cancel_appointment(db, appointment_id, reason=reason, actor=current_user)
        return to_response(result.appointment, result.warnings)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc
