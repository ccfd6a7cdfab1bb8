"""Review model definitions."""

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from telehealth.database import Base, generate_uuid


class Review(Base):
    """A patient's rating of a completed session. One per appointment."""
    __tablename__ = "reviews"
    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating_range"),
        UniqueConstraint("appointment_id", name="uq_reviews_appointment"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=False)
    patient_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    therapist_id = Column(String(36), ForeignKey("therapists.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    feedback = Column(String)
    tags = Column(JSON, nullable=False, default=list)
    is_anonymous = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime)
