"""User model definitions."""

from sqlalchemy import Column, String
from telehealth.database import Base, generate_uuid


class User(Base):
    """Represents an application user mirrored from the identity provider."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String, unique=True, index=True)
    first_name = Column(String)
    last_name = Column(String)
    role = Column(String)  # patient/therapist/admin
