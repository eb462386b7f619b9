"""Clinic model definitions."""

from sqlalchemy import Column, Integer, String
from clinic_scheduler.database import Base


class Clinic(Base):
    """Represents a clinic where doctors hold duty hours."""
    __tablename__ = "clinics"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
