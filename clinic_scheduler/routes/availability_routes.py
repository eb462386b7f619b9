from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_scheduler.auth.dependencies import require_roles
from clinic_scheduler.core.civil_time import civil_now, format_civil_date, format_civil_time
from clinic_scheduler.core.errors import SchedulingError
from clinic_scheduler.database import get_db
from clinic_scheduler.models.availability import AvailabilityWindow
from clinic_scheduler.models.user import Role
from clinic_scheduler.routes.common import database_unavailable, ensure_database_ready, to_http_exception
from clinic_scheduler.services import availability_windows, duty_hours, slots
from clinic_scheduler.services.booking import ActingParty, get_doctor
from clinic_scheduler.services.service_types import service_options_for

router = APIRouter(tags=['availability'])

require_doctor = require_roles(Role.DOCTOR.value)


class SlotResponse(BaseModel):
    start: str
    end: str


class SlotsResponse(BaseModel):
    slots: list[SlotResponse]


class BulkSlotsResponse(BaseModel):
    availability: dict[int, list[SlotResponse]]


class EarliestBookingResponse(BaseModel):
    doctor_id: int
    specialization: str | None = None
    earliest_date: str


class ServiceOptionResponse(BaseModel):
    label: str
    value: str
    service_type: str


class AvailabilityWindowResponse(BaseModel):
    id: int
    doctor_user_id: int
    clinic_id: int
    date: str
    start: str
    end: str
    archived: bool


class CreateWindowRequest(BaseModel):
    clinic_id: int
    date: str
    start: str
    end: str

    @field_validator('date', 'start', 'end')
    @classmethod
    def strip_value(cls, value: str) -> str:
        return value.strip()


class UpdateWindowRequest(BaseModel):
    clinic_id: int | None = None
    date: str | None = None
    start: str | None = None
    end: str | None = None


class DutyHoursRequest(BaseModel):
    clinic_id: int
    daily_start: str
    daily_end: str
    week_start: str | None = None

    @field_validator('daily_start', 'daily_end')
    @classmethod
    def strip_time(cls, value: str) -> str:
        return value.strip()


def window_to_response(window: AvailabilityWindow) -> AvailabilityWindowResponse:
    return AvailabilityWindowResponse(
        id=window.id,
        doctor_user_id=window.doctor_user_id,
        clinic_id=window.clinic_id,
        date=window.available_date.isoformat(),
        start=format_civil_time(window.start_time),
        end=format_civil_time(window.end_time),
        archived=window.archived_at is not None,
    )


def parse_doctor_ids(raw_ids: str) -> list[int]:
    doctor_ids: list[int] = []
    for value in raw_ids.split(','):
        value = value.strip()
        if not value:
            continue
        if not value.isdigit():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='doctor_ids must be a comma-separated list of ids.',
            )
        doctor_ids.append(int(value))

    if not doctor_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='No doctors provided.',
        )

    return list(dict.fromkeys(doctor_ids))


@router.get('/slots', response_model=SlotsResponse)
def list_doctor_slots(
    doctor_id: int = Query(...),
    clinic_id: int = Query(...),
    date: str = Query(...),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return SlotsResponse(slots=slots.generate_slots(db, doctor_id, clinic_id, date))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/slots/bulk', response_model=BulkSlotsResponse)
def list_bulk_slots(
    clinic_id: int = Query(...),
    doctor_ids: str = Query(...),
    date: str = Query(...),
    db: Session = Depends(get_db),
):
    requested_ids = parse_doctor_ids(doctor_ids)
    ensure_database_ready()

    try:
        return BulkSlotsResponse(availability=slots.generate_slots_bulk(db, clinic_id, requested_ids, date))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/earliest-booking', response_model=EarliestBookingResponse)
def get_earliest_booking(doctor_id: int = Query(...), db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        doctor = get_doctor(db, doctor_id)
        earliest = duty_hours.earliest_booking_start(civil_now(), doctor.specialization)
        return EarliestBookingResponse(
            doctor_id=doctor.id,
            specialization=doctor.specialization,
            earliest_date=format_civil_date(earliest),
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/service-options', response_model=list[ServiceOptionResponse])
def list_service_options(doctor_id: int = Query(...), db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        doctor = get_doctor(db, doctor_id)
        return [
            ServiceOptionResponse(label=option.label, value=option.value, service_type=option.service_type)
            for option in service_options_for(doctor.specialization)
        ]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/windows', response_model=list[AvailabilityWindowResponse])
def list_my_windows(
    include_archived: bool = Query(default=False),
    acting_party: ActingParty = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        windows = availability_windows.list_doctor_windows(db, acting_party.user_id, include_archived)
        return [window_to_response(window) for window in windows]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/windows', response_model=AvailabilityWindowResponse, status_code=status.HTTP_201_CREATED)
def create_window(
    data: CreateWindowRequest,
    acting_party: ActingParty = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        window = availability_windows.create_availability_window(
            db,
            doctor_id=acting_party.user_id,
            clinic_id=data.clinic_id,
            civil_date=data.date,
            start=data.start,
            end=data.end,
        )
        return window_to_response(window)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/windows/{window_id}', response_model=AvailabilityWindowResponse)
def update_window(
    window_id: int,
    data: UpdateWindowRequest,
    acting_party: ActingParty = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        window = availability_windows.update_availability_window(
            db,
            window_id,
            doctor_id=acting_party.user_id,
            clinic_id=data.clinic_id,
            civil_date=data.date,
            start=data.start,
            end=data.end,
        )
        return window_to_response(window)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/duty-hours', response_model=list[AvailabilityWindowResponse], status_code=status.HTTP_201_CREATED)
def create_duty_hours(
    data: DutyHoursRequest,
    acting_party: ActingParty = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        created = duty_hours.generate_duty_hours(
            db,
            doctor_id=acting_party.user_id,
            clinic_id=data.clinic_id,
            daily_start=data.daily_start,
            daily_end=data.daily_end,
            now=civil_now(),
            week_start=data.week_start,
        )
        return [window_to_response(window) for window in created]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
