import os
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from clinic_scheduler.core.civil_time import civil_instant  # noqa: E402
from clinic_scheduler.database import Base  # noqa: E402
from clinic_scheduler.models.appointment import Appointment, AppointmentStatus  # noqa: E402
from clinic_scheduler.models.availability import AvailabilityWindow  # noqa: E402
from clinic_scheduler.models.clinic import Clinic  # noqa: E402
from clinic_scheduler.models.consultation import Consultation  # noqa: E402,F401
from clinic_scheduler.models.user import Role, Specialization, User  # noqa: E402


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def _add_user(db, email: str, role: Role, specialization: Specialization | None = None) -> User:
    user = User(
        email=email,
        hashed_password='',
        role=role.value,
        specialization=specialization.value if specialization else None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def people(db):
    clinic = Clinic(name='Main Campus Clinic')
    other_clinic = Clinic(name='Annex Clinic')
    db.add_all([clinic, other_clinic])
    db.commit()

    return SimpleNamespace(
        clinic=clinic,
        other_clinic=other_clinic,
        doctor=_add_user(db, 'physician@clinic.test', Role.DOCTOR, Specialization.PHYSICIAN),
        dentist=_add_user(db, 'dentist@clinic.test', Role.DOCTOR, Specialization.DENTIST),
        patient=_add_user(db, 'patient@clinic.test', Role.PATIENT),
        other_patient=_add_user(db, 'other.patient@clinic.test', Role.PATIENT),
        scholar=_add_user(db, 'scholar@clinic.test', Role.SCHOLAR),
        nurse=_add_user(db, 'nurse@clinic.test', Role.NURSE),
    )


@pytest.fixture
def add_window(db):
    def _add_window(doctor, clinic, civil_date: str, start: str, end: str) -> AvailabilityWindow:
        window = AvailabilityWindow(
            doctor_user_id=doctor.id,
            clinic_id=clinic.id,
            available_date=civil_instant(civil_date).date(),
            start_time=civil_instant(civil_date, start),
            end_time=civil_instant(civil_date, end),
        )
        db.add(window)
        db.commit()
        db.refresh(window)
        return window

    return _add_window


@pytest.fixture
def add_appointment(db):
    def _add_appointment(
        patient,
        doctor,
        clinic,
        civil_date: str,
        start: str,
        end: str,
        status: AppointmentStatus = AppointmentStatus.PENDING,
    ) -> Appointment:
        appointment = Appointment(
            patient_user_id=patient.id,
            doctor_user_id=doctor.id,
            clinic_id=clinic.id,
            created_by_user_id=patient.id,
            appointment_date=civil_instant(civil_date).date(),
            start_time=civil_instant(civil_date, start),
            end_time=civil_instant(civil_date, end),
            service_type='Consultation',
            status=status.value,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _add_appointment
