"""Appointment model definitions."""

from enum import Enum

from sqlalchemy import Column, Date, ForeignKey, Index, Integer, String
from clinic_scheduler.database import ACTIVE_SLOT_INDEX_NAME, Base, UTCDateTime, utc_now


class AppointmentStatus(str, Enum):
    PENDING = 'Pending'
    APPROVED = 'Approved'
    MOVED = 'Moved'
    COMPLETED = 'Completed'
    CANCELLED = 'Cancelled'


BLOCKING_STATUSES = (
    AppointmentStatus.PENDING.value,
    AppointmentStatus.APPROVED.value,
    AppointmentStatus.MOVED.value,
)
TERMINAL_STATUSES = (
    AppointmentStatus.COMPLETED.value,
    AppointmentStatus.CANCELLED.value,
)


class Appointment(Base):
    """Represents a scheduled appointment."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    patient_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False)
    created_by_user_id = Column(Integer, ForeignKey("users.id"))
    appointment_date = Column(Date, nullable=False)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    service_type = Column(String)
    status = Column(String, nullable=False, default=AppointmentStatus.PENDING.value)
    remarks = Column(String)
    created_at = Column(UTCDateTime, default=utc_now)
    updated_at = Column(UTCDateTime, default=utc_now, onupdate=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# Two active appointments of one doctor can never share a start instant.
Index(
    ACTIVE_SLOT_INDEX_NAME,
    Appointment.doctor_user_id,
    Appointment.start_time,
    unique=True,
    sqlite_where=Appointment.status.in_(BLOCKING_STATUSES),
    postgresql_where=Appointment.status.in_(BLOCKING_STATUSES),
)
