import os
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('NOTIFICATIONS_ENABLED', 'false')

from therapy_backend.database import Base  # noqa: E402
from therapy_backend.models import notification  # noqa: E402,F401
from therapy_backend.models.appointment import Appointment, Reminder  # noqa: E402,F401
from therapy_backend.models.patient import Patient  # noqa: E402
from therapy_backend.models.practitioner import Practitioner  # noqa: E402
from therapy_backend.models.user import User  # noqa: E402

MONDAY = date(2024, 1, 1)

MORNING_AVAILABILITY = {
    'monday': {'start': '10:00', 'end': '12:00', 'isAvailable': True},
    'tuesday': {'start': '09:00', 'end': '17:00', 'isAvailable': True},
    'sunday': {'start': '10:00', 'end': '17:00', 'isAvailable': False},
}


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'scheduling.db'}",
        connect_args={'check_same_thread': False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clinic(db):
    practitioner_user = User(email='asha@clinic.example', first_name='Asha', last_name='Rao', role='practitioner')
    patient_user = User(email='ravi@example.com', first_name='Ravi', last_name='Kumar', role='patient')
    other_patient_user = User(email='meera@example.com', first_name='Meera', role='patient')
    admin_user = User(email='admin@clinic.example', role='admin')
    db.add_all([practitioner_user, patient_user, other_patient_user, admin_user])
    db.flush()

    practitioner = Practitioner(
        user_id=practitioner_user.id,
        license_number='AYU-1001',
        specialization=['abhyanga', 'shirodhara'],
        availability=MORNING_AVAILABILITY,
        session_duration=60,
        break_time=0,
        consultation_fee=1500.0,
    )
    patient = Patient(user_id=patient_user.id)
    other_patient = Patient(user_id=other_patient_user.id)
    db.add_all([practitioner, patient, other_patient])
    db.commit()

    return SimpleNamespace(
        practitioner_id=practitioner.id,
        patient_id=patient.id,
        other_patient_id=other_patient.id,
        practitioner_user_id=practitioner_user.id,
        patient_user_id=patient_user.id,
        other_patient_user_id=other_patient_user.id,
        admin_user_id=admin_user.id,
    )
