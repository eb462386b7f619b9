from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.auth.dependencies import get_acting_party, require_roles
from clinic_scheduler.core import config
from clinic_scheduler.core.civil_time import civil_now, format_civil_time
from clinic_scheduler.core.errors import SchedulingError
from clinic_scheduler.database import get_db
from clinic_scheduler.models.appointment import Appointment
from clinic_scheduler.models.user import Role
from clinic_scheduler.routes.common import database_unavailable, ensure_database_ready, to_http_exception
from clinic_scheduler.services import booking
from clinic_scheduler.services.booking import ActingParty

router = APIRouter(tags=['appointments'])

require_booker = require_roles(Role.PATIENT.value, Role.SCHOLAR.value)


class CreateAppointmentRequest(BaseModel):
    clinic_id: int
    doctor_user_id: int
    service_type: str
    date: str
    time_start: str
    time_end: str
    patient_user_id: int | None = None

    @field_validator('service_type', 'date', 'time_start', 'time_end')
    @classmethod
    def strip_value(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Missing required fields.')
        return normalized


class ScheduleChangeRequest(BaseModel):
    date: str
    time_start: str
    time_end: str
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if len(normalized) > config.MAX_REMARKS_LENGTH:
            raise ValueError(f'Reason must be {config.MAX_REMARKS_LENGTH} characters or fewer.')

        return normalized or None


class StatusActionRequest(BaseModel):
    action: str

    @field_validator('action')
    @classmethod
    def normalize_action(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in booking.STATUS_ACTIONS:
            raise ValueError('Invalid action.')
        return normalized


class AppointmentResponse(BaseModel):
    id: int
    patient_user_id: int
    doctor_user_id: int
    clinic_id: int
    created_by_user_id: int | None = None
    date: str
    time_start: str
    time_end: str
    service_type: str | None = None
    status: str
    remarks: str | None = None


def appointment_to_response(appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        patient_user_id=appointment.patient_user_id,
        doctor_user_id=appointment.doctor_user_id,
        clinic_id=appointment.clinic_id,
        created_by_user_id=appointment.created_by_user_id,
        date=appointment.appointment_date.isoformat(),
        time_start=format_civil_time(appointment.start_time),
        time_end=format_civil_time(appointment.end_time),
        service_type=appointment.service_type,
        status=appointment.status,
        remarks=appointment.remarks,
    )


@router.get('', response_model=list[AppointmentResponse])
def list_my_appointments(
    limit: int = Query(default=200, ge=1, le=500),
    acting_party: ActingParty = Depends(get_acting_party),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointments = booking.list_appointments(db, acting_party, limit)
        return [appointment_to_response(appointment) for appointment in appointments]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    acting_party: ActingParty = Depends(require_booker),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        patient_id = booking.resolve_booking_patient(acting_party, data.patient_user_id)
        appointment = booking.create_appointment(
            db,
            patient_id=patient_id,
            doctor_id=data.doctor_user_id,
            clinic_id=data.clinic_id,
            civil_date=data.date,
            start=data.time_start,
            end=data.time_end,
            service_type=data.service_type,
            created_by=acting_party.user_id,
            now=civil_now(),
        )
        return appointment_to_response(appointment)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.patch('/{appointment_id}/schedule', response_model=AppointmentResponse)
def change_appointment_schedule(
    appointment_id: int,
    data: ScheduleChangeRequest,
    acting_party: ActingParty = Depends(get_acting_party),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = booking.move_or_reschedule(
            db,
            appointment_id,
            acting_party,
            civil_date=data.date,
            start=data.time_start,
            end=data.time_end,
            reason=data.reason,
            now=civil_now(),
        )
        return appointment_to_response(appointment)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    acting_party: ActingParty = Depends(get_acting_party),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = booking.cancel_appointment(db, appointment_id, acting_party, now=civil_now())
        return appointment_to_response(appointment)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.patch('/{appointment_id}/status', response_model=AppointmentResponse)
def change_appointment_status(
    appointment_id: int,
    data: StatusActionRequest,
    acting_party: ActingParty = Depends(get_acting_party),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = booking.apply_status_action(db, appointment_id, acting_party, data.action, now=civil_now())
        return appointment_to_response(appointment)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
