"""Storage interfaces used by the scheduling services and their SQLAlchemy implementations.

Services receive these objects at construction, so tests can hand them
in-memory substitutes that follow the same protocols.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from telehealth.models.appointment import ACTIVE_STATUSES, TERMINAL_STATUSES, Appointment
from telehealth.models.availability import AvailabilityWindow, BlockedSlot
from telehealth.models.review import Review
from telehealth.models.therapist import Therapist
from telehealth.models.user import User
from telehealth.scheduling.errors import ConflictError

SLOT_TAKEN_MESSAGE = 'Time slot is not available.'
DUPLICATE_REVIEW_MESSAGE = 'This appointment has already been reviewed.'

UPCOMING = 'upcoming'
PAST = 'past'


@dataclass(frozen=True)
class TherapistStats:
    average_rating: float
    total_reviews: int


@dataclass(frozen=True)
class TherapistFilters:
    """Directory search filters. ``None`` means the filter is not applied."""

    search: str | None = None
    min_rating: float | None = None
    max_price: int | None = None
    is_online: bool | None = None


class UserStore(Protocol):
    def get(self, user_id: str) -> User | None:
        ...


class TherapistStore(Protocol):
    def get(self, therapist_id: str) -> Therapist | None:
        ...

    def get_by_user_id(self, user_id: str) -> Therapist | None:
        ...

    def search(self, filters: TherapistFilters, offset: int, limit: int) -> tuple[list[Therapist], int]:
        """Matching therapists, online first then by rating, and the total match count."""
        ...

    def set_online(self, therapist_id: str, is_online: bool) -> Therapist | None:
        ...

    def list_online(self, limit: int) -> list[Therapist]:
        ...


class AppointmentStore(Protocol):
    def get(self, appointment_id: str) -> Appointment | None:
        ...

    def create_pending(self, appointment: Appointment) -> Appointment:
        """Insert ``appointment`` unless an active one holds the same therapist and start."""
        ...

    def transition(
        self,
        appointment_id: str,
        expected_statuses: frozenset[str],
        values: dict[str, Any],
    ) -> Appointment | None:
        """Apply ``values`` only if the status is still one of ``expected_statuses``.

        Returns the updated appointment, or ``None`` when nothing matched.
        """
        ...

    def active_starts(self, therapist_id: str, range_start: datetime, range_end: datetime) -> set[datetime]:
        ...

    def list_for_patient(self, patient_id: str, scope: str | None, now: datetime) -> list[Appointment]:
        ...

    def list_for_therapist(self, therapist_id: str, scope: str | None, now: datetime) -> list[Appointment]:
        ...


class AvailabilityStore(Protocol):
    def windows_for_day(self, therapist_id: str, day_of_week: int) -> list[AvailabilityWindow]:
        ...

    def blocked_between(self, therapist_id: str, range_start: datetime, range_end: datetime) -> list[BlockedSlot]:
        ...


class ReviewStore(Protocol):
    def get_for_appointment(self, appointment_id: str) -> Review | None:
        ...

    def add_and_recompute(self, review: Review) -> TherapistStats:
        """Insert ``review`` and refresh the therapist's aggregates in the same transaction."""
        ...

    def list_for_therapist(self, therapist_id: str, offset: int, limit: int) -> tuple[list[Review], int]:
        ...


def _status_values(statuses) -> list[str]:
    return [getattr(status, 'value', status) for status in statuses]


def is_active_slot_violation(exc: IntegrityError) -> bool:
    message = str(getattr(exc, 'orig', exc))
    return (
        'uq_appointments_active_slot' in message
        or 'appointments.therapist_id, appointments.scheduled_at' in message
    )


def is_duplicate_review_violation(exc: IntegrityError) -> bool:
    message = str(getattr(exc, 'orig', exc))
    return 'uq_reviews_appointment' in message or 'reviews.appointment_id' in message


class SqlUserStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> User | None:
        return self.db.query(User).filter(User.id == user_id).first()


class SqlTherapistStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, therapist_id: str) -> Therapist | None:
        return self.db.query(Therapist).filter(Therapist.id == therapist_id).first()

    def get_by_user_id(self, user_id: str) -> Therapist | None:
        return self.db.query(Therapist).filter(Therapist.user_id == user_id).first()

    def search(self, filters: TherapistFilters, offset: int, limit: int) -> tuple[list[Therapist], int]:
        query = self.db.query(Therapist).join(User, Therapist.user_id == User.id)

        if filters.search:
            pattern = f'%{filters.search.strip()}%'
            query = query.filter(
                or_(
                    User.first_name.ilike(pattern),
                    User.last_name.ilike(pattern),
                    Therapist.professional_title.ilike(pattern),
                )
            )
        if filters.min_rating is not None:
            query = query.filter(Therapist.average_rating >= filters.min_rating)
        if filters.max_price is not None:
            query = query.filter(Therapist.hourly_rate <= filters.max_price)
        if filters.is_online is not None:
            query = query.filter(Therapist.is_online == filters.is_online)

        total = query.count()
        therapists = (
            query.order_by(Therapist.is_online.desc(), Therapist.average_rating.desc(), Therapist.id)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return therapists, total

    def set_online(self, therapist_id: str, is_online: bool) -> Therapist | None:
        therapist = self.get(therapist_id)
        if therapist is None:
            return None

        therapist.is_online = is_online
        self.db.commit()
        self.db.refresh(therapist)
        return therapist

    def list_online(self, limit: int) -> list[Therapist]:
        return (
            self.db.query(Therapist)
            .filter(Therapist.is_online.is_(True))
            .order_by(Therapist.average_rating.desc(), Therapist.id)
            .limit(limit)
            .all()
        )


class SqlAppointmentStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, appointment_id: str) -> Appointment | None:
        return self.db.query(Appointment).filter(Appointment.id == appointment_id).first()

    def _find_active_at(self, therapist_id: str, scheduled_at: datetime) -> Appointment | None:
        return self.db.query(Appointment).filter(
            Appointment.therapist_id == therapist_id,
            Appointment.scheduled_at == scheduled_at,
            Appointment.status.in_(_status_values(ACTIVE_STATUSES)),
        ).first()

    def create_pending(self, appointment: Appointment) -> Appointment:
        # The partial unique index rejects whichever of two concurrent inserts commits second.
        try:
            if self._find_active_at(appointment.therapist_id, appointment.scheduled_at):
                self.db.rollback()
                raise ConflictError(SLOT_TAKEN_MESSAGE)

            self.db.add(appointment)
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if is_active_slot_violation(exc):
                raise ConflictError(SLOT_TAKEN_MESSAGE) from exc
            raise

        self.db.refresh(appointment)
        return appointment

    def transition(
        self,
        appointment_id: str,
        expected_statuses: frozenset[str],
        values: dict[str, Any],
    ) -> Appointment | None:
        updated = self.db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.status.in_(_status_values(expected_statuses)),
        ).update(values, synchronize_session=False)

        if not updated:
            self.db.rollback()
            return None

        self.db.commit()
        return self.get(appointment_id)

    def active_starts(self, therapist_id: str, range_start: datetime, range_end: datetime) -> set[datetime]:
        rows = self.db.query(Appointment.scheduled_at).filter(
            Appointment.therapist_id == therapist_id,
            Appointment.status.in_(_status_values(ACTIVE_STATUSES)),
            Appointment.scheduled_at >= range_start,
            Appointment.scheduled_at < range_end,
        ).all()
        return {scheduled_at for (scheduled_at,) in rows}

    def _scoped(self, query, scope: str | None, now: datetime):
        if scope == UPCOMING:
            return query.filter(
                Appointment.scheduled_at >= now,
                Appointment.status.in_(_status_values(ACTIVE_STATUSES)),
            ).order_by(Appointment.scheduled_at.asc())

        if scope == PAST:
            return query.filter(
                or_(
                    Appointment.scheduled_at < now,
                    Appointment.status.in_(_status_values(TERMINAL_STATUSES)),
                )
            ).order_by(Appointment.scheduled_at.desc())

        return query.order_by(Appointment.scheduled_at.asc())

    def list_for_patient(self, patient_id: str, scope: str | None, now: datetime) -> list[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.patient_id == patient_id)
        return self._scoped(query, scope, now).all()

    def list_for_therapist(self, therapist_id: str, scope: str | None, now: datetime) -> list[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.therapist_id == therapist_id)
        return self._scoped(query, scope, now).all()


class SqlAvailabilityStore:
    def __init__(self, db: Session):
        self.db = db

    def windows_for_day(self, therapist_id: str, day_of_week: int) -> list[AvailabilityWindow]:
        return self.db.query(AvailabilityWindow).filter(
            AvailabilityWindow.therapist_id == therapist_id,
            AvailabilityWindow.day_of_week == day_of_week,
            AvailabilityWindow.is_active.is_(True),
        ).order_by(AvailabilityWindow.start_time.asc()).all()

    def blocked_between(self, therapist_id: str, range_start: datetime, range_end: datetime) -> list[BlockedSlot]:
        return self.db.query(BlockedSlot).filter(
            BlockedSlot.therapist_id == therapist_id,
            BlockedSlot.starts_at < range_end,
            BlockedSlot.ends_at > range_start,
        ).all()


class SqlReviewStore:
    def __init__(self, db: Session):
        self.db = db

    def get_for_appointment(self, appointment_id: str) -> Review | None:
        return self.db.query(Review).filter(Review.appointment_id == appointment_id).first()

    def add_and_recompute(self, review: Review) -> TherapistStats:
        try:
            self.db.add(review)
            self.db.flush()

            average_rating, total_reviews = self.db.query(
                func.avg(Review.rating),
                func.count(Review.id),
            ).filter(Review.therapist_id == review.therapist_id).one()

            stats = TherapistStats(
                average_rating=float(average_rating or 0),
                total_reviews=int(total_reviews or 0),
            )
            self.db.query(Therapist).filter(Therapist.id == review.therapist_id).update(
                {
                    Therapist.average_rating: stats.average_rating,
                    Therapist.total_reviews: stats.total_reviews,
                },
                synchronize_session=False,
            )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if is_duplicate_review_violation(exc):
                raise ConflictError(DUPLICATE_REVIEW_MESSAGE) from exc
            raise

        self.db.refresh(review)
        return stats

    def list_for_therapist(self, therapist_id: str, offset: int, limit: int) -> tuple[list[Review], int]:
        query = self.db.query(Review).filter(Review.therapist_id == therapist_id)
        total = query.count()
        reviews = query.order_by(Review.created_at.desc()).offset(offset).limit(limit).all()
        return reviews, total
