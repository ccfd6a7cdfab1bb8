"""Therapist profile model definitions."""

from sqlalchemy import Boolean, Column, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from telehealth.database import Base, generate_uuid


class Therapist(Base):
    """A therapist profile. ``average_rating`` and ``total_reviews`` are derived from reviews."""
    __tablename__ = "therapists"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    professional_title = Column(String)
    timezone = Column(String, nullable=False, default="UTC")
    hourly_rate = Column(Integer)
    average_rating = Column(Float, nullable=False, default=0.0)
    total_reviews = Column(Integer, nullable=False, default=0)
    is_online = Column(Boolean, nullable=False, default=False)

    user = relationship("User")
