"""Availability model definitions."""

from sqlalchemy import Column, Date, ForeignKey, Integer
from clinic_scheduler.database import Base, UTCDateTime, utc_now


class AvailabilityWindow(Base):
    """Represents a doctor-declared window in which appointments may be placed."""
    __tablename__ = "doctor_availability"

    id = Column(Integer, primary_key=True)
    doctor_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=False)
    available_date = Column(Date, nullable=False)
    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    archived_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=utc_now)
