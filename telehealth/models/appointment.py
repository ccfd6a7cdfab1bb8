"""Appointment model definitions."""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, text
from telehealth.database import Base, generate_uuid


class AppointmentStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class AppointmentType(str, Enum):
    SCHEDULED = "SCHEDULED"
    INSTANT = "INSTANT"


ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)

_ACTIVE_SLOT_WHERE = text("status IN ('PENDING', 'CONFIRMED')")


class Appointment(Base):
    """A scheduled or instant therapy session.

    Timestamps are stored as naive UTC. ``timezone`` is the zone the booking
    was made in and is only used for display.
    """
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_appointments_active_slot",
            "therapist_id",
            "scheduled_at",
            unique=True,
            sqlite_where=_ACTIVE_SLOT_WHERE,
            postgresql_where=_ACTIVE_SLOT_WHERE,
        ),
        Index("idx_appointments_patient_start", "patient_id", "scheduled_at"),
        Index("idx_appointments_therapist_start", "therapist_id", "scheduled_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    patient_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    therapist_id = Column(String(36), ForeignKey("therapists.id"), nullable=False)
    scheduled_at = Column(DateTime, nullable=False)
    timezone = Column(String, nullable=False, default="UTC")
    duration_minutes = Column(Integer, nullable=False)
    type = Column(String, nullable=False, default=AppointmentType.SCHEDULED.value)
    status = Column(String, nullable=False, default=AppointmentStatus.PENDING.value)
    amount = Column(Integer, nullable=False)
    booking_notes = Column(String)
    session_notes = Column(String)
    cancellation_reason = Column(String)
    confirmed_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)
