from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from clinic_scheduler.core.errors import (
    InvalidInput,
    NotFound,
    PermissionDenied,
    RejectionReason,
    SchedulingError,
)
from clinic_scheduler.database import ensure_appointment_schema, ensure_availability_schema

CONFLICT_REASONS = {
    RejectionReason.SLOT_ALREADY_BOOKED,
    RejectionReason.PATIENT_CONFLICT,
    RejectionReason.WINDOW_OVERLAP,
}

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def to_http_exception(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, InvalidInput):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, NotFound):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, PermissionDenied):
        status_code = status.HTTP_403_FORBIDDEN
    elif exc.reason in CONFLICT_REASONS:
        status_code = status.HTTP_409_CONFLICT
    else:
        status_code = status.HTTP_400_BAD_REQUEST

    return HTTPException(status_code=status_code, detail=exc.as_detail())


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
