"""Availability model definitions."""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Time
from telehealth.database import Base, generate_uuid


class AvailabilityWindow(Base):
    """A recurring weekly window in which a therapist takes bookings.

    ``day_of_week`` counts from Sunday (0) to Saturday (6). Times are in the
    therapist's local timezone.
    """
    __tablename__ = "availability_windows"
    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_availability_day_of_week"),
        CheckConstraint("start_time < end_time", name="ck_availability_window_order"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    therapist_id = Column(String(36), ForeignKey("therapists.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class BlockedSlot(Base):
    """A one-off range during which the therapist is unavailable."""
    __tablename__ = "blocked_slots"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    therapist_id = Column(String(36), ForeignKey("therapists.id"), nullable=False, index=True)
    starts_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    reason = Column(String)
