"""Consultation model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, String
from clinic_scheduler.database import Base, UTCDateTime, utc_now


class Consultation(Base):
    """Clinical record of a visit; an appointment is completed only once one exists."""
    __tablename__ = "consultations"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=False)
    doctor_user_id = Column(Integer, ForeignKey("users.id"))
    notes = Column(String)
    created_at = Column(UTCDateTime, default=utc_now)
