"""User model definitions."""

from enum import Enum

from sqlalchemy import Column, Integer, String
from clinic_scheduler.database import Base


class Role(str, Enum):
    PATIENT = 'patient'
    DOCTOR = 'doctor'
    SCHOLAR = 'scholar'
    NURSE = 'nurse'


class Specialization(str, Enum):
    PHYSICIAN = 'Physician'
    DENTIST = 'Dentist'


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    hashed_password = Column(String)
    role = Column(String)  # patient/doctor/scholar/nurse
    specialization = Column(String, nullable=True)  # doctors only

    @property
    def is_doctor(self) -> bool:
        return self.role == Role.DOCTOR.value
