import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from telehealth.database import Base  # noqa: E402
from telehealth.models.appointment import ACTIVE_STATUSES, TERMINAL_STATUSES, Appointment  # noqa: E402
from telehealth.models.availability import AvailabilityWindow, BlockedSlot  # noqa: E402
from telehealth.models.therapist import Therapist  # noqa: E402
from telehealth.models.user import User  # noqa: E402
from telehealth.scheduling.availability import AvailabilityService  # noqa: E402
from telehealth.scheduling.directory import TherapistDirectory  # noqa: E402
from telehealth.scheduling.errors import ConflictError  # noqa: E402
from telehealth.scheduling.notifications import NotificationDispatcher  # noqa: E402
from telehealth.scheduling.repositories import (  # noqa: E402
    DUPLICATE_REVIEW_MESSAGE,
    PAST,
    SLOT_TAKEN_MESSAGE,
    UPCOMING,
    SqlAppointmentStore,
    SqlAvailabilityStore,
    SqlReviewStore,
    SqlTherapistStore,
    SqlUserStore,
    TherapistStats,
)
from telehealth.scheduling.reviews import ReviewService  # noqa: E402
from telehealth.scheduling.service import SchedulingService  # noqa: E402
from telehealth.scheduling.state_machine import Actor, ActorRole  # noqa: E402

FIXED_NOW = datetime(2024, 5, 30, 12, 0)

_ACTIVE = {status.value for status in ACTIVE_STATUSES}
_TERMINAL = {status.value for status in TERMINAL_STATUSES}


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSender:
    def __init__(self):
        self.sent = []

    def send(self, recipient_user_id, kind, payload):
        self.sent.append(SimpleNamespace(recipient=recipient_user_id, kind=kind, payload=payload))


class FailingSender:
    def __init__(self):
        self.attempts = 0

    def send(self, recipient_user_id, kind, payload):
        self.attempts += 1
        raise RuntimeError('push gateway unavailable')


class RecordingPaymentProcessor:
    def __init__(self):
        self.refunds = []

    def request_refund(self, appointment_id, amount, refund_percentage):
        self.refunds.append((appointment_id, amount, refund_percentage))


class InMemoryUserStore:
    def __init__(self):
        self.rows = {}

    def get(self, user_id):
        return self.rows.get(user_id)


class InMemoryTherapistStore:
    def __init__(self, users):
        self.rows = {}
        self.users = users

    def get(self, therapist_id):
        return self.rows.get(therapist_id)

    def get_by_user_id(self, user_id):
        return next((therapist for therapist in self.rows.values() if therapist.user_id == user_id), None)

    def _matches(self, therapist, filters):
        if filters.search:
            user = self.users.get(therapist.user_id)
            needle = filters.search.strip().lower()
            haystack = [therapist.professional_title]
            if user is not None:
                haystack += [user.first_name, user.last_name]
            if not any(needle in (value or '').lower() for value in haystack):
                return False
        if filters.min_rating is not None and therapist.average_rating < filters.min_rating:
            return False
        if filters.max_price is not None and (therapist.hourly_rate is None or therapist.hourly_rate > filters.max_price):
            return False
        if filters.is_online is not None and bool(therapist.is_online) != filters.is_online:
            return False
        return True

    def search(self, filters, offset, limit):
        matches = [therapist for therapist in self.rows.values() if self._matches(therapist, filters)]
        matches.sort(key=lambda therapist: therapist.id)
        matches.sort(key=lambda therapist: (bool(therapist.is_online), therapist.average_rating), reverse=True)
        return matches[offset:offset + limit], len(matches)

    def set_online(self, therapist_id, is_online):
        therapist = self.rows.get(therapist_id)
        if therapist is not None:
            therapist.is_online = is_online
        return therapist

    def list_online(self, limit):
        online = [therapist for therapist in self.rows.values() if therapist.is_online]
        online.sort(key=lambda therapist: therapist.id)
        online.sort(key=lambda therapist: therapist.average_rating, reverse=True)
        return online[:limit]


class InMemoryAppointmentStore:
    def __init__(self):
        self.rows = {}

    def get(self, appointment_id):
        return self.rows.get(appointment_id)

    def create_pending(self, appointment):
        for existing in self.rows.values():
            if (
                existing.therapist_id == appointment.therapist_id
                and existing.scheduled_at == appointment.scheduled_at
                and existing.status in _ACTIVE
            ):
                raise ConflictError(SLOT_TAKEN_MESSAGE)
        self.rows[appointment.id] = appointment
        return appointment

    def transition(self, appointment_id, expected_statuses, values):
        appointment = self.rows.get(appointment_id)
        expected = {getattr(status, 'value', status) for status in expected_statuses}
        if appointment is None or appointment.status not in expected:
            return None
        for name, value in values.items():
            setattr(appointment, name, value)
        return appointment

    def active_starts(self, therapist_id, range_start, range_end):
        return {
            appointment.scheduled_at
            for appointment in self.rows.values()
            if appointment.therapist_id == therapist_id
            and appointment.status in _ACTIVE
            and range_start <= appointment.scheduled_at < range_end
        }

    def _scoped(self, appointments, scope, now):
        if scope == UPCOMING:
            selected = [a for a in appointments if a.scheduled_at >= now and a.status in _ACTIVE]
            return sorted(selected, key=lambda a: a.scheduled_at)
        if scope == PAST:
            selected = [a for a in appointments if a.scheduled_at < now or a.status in _TERMINAL]
            return sorted(selected, key=lambda a: a.scheduled_at, reverse=True)
        return sorted(appointments, key=lambda a: a.scheduled_at)

    def list_for_patient(self, patient_id, scope, now):
        return self._scoped([a for a in self.rows.values() if a.patient_id == patient_id], scope, now)

    def list_for_therapist(self, therapist_id, scope, now):
        return self._scoped([a for a in self.rows.values() if a.therapist_id == therapist_id], scope, now)


class InMemoryAvailabilityStore:
    def __init__(self):
        self.windows = []
        self.blocked = []

    def windows_for_day(self, therapist_id, day_of_week):
        return sorted(
            (
                window
                for window in self.windows
                if window.therapist_id == therapist_id and window.day_of_week == day_of_week and window.is_active
            ),
            key=lambda window: window.start_time,
        )

    def blocked_between(self, therapist_id, range_start, range_end):
        return [
            block
            for block in self.blocked
            if block.therapist_id == therapist_id and block.starts_at < range_end and block.ends_at > range_start
        ]


class InMemoryReviewStore:
    def __init__(self, therapists):
        self.therapists = therapists
        self.rows = []

    def get_for_appointment(self, appointment_id):
        return next((review for review in self.rows if review.appointment_id == appointment_id), None)

    def add_and_recompute(self, review):
        if self.get_for_appointment(review.appointment_id) is not None:
            raise ConflictError(DUPLICATE_REVIEW_MESSAGE)
        self.rows.append(review)

        ratings = [r.rating for r in self.rows if r.therapist_id == review.therapist_id]
        stats = TherapistStats(average_rating=sum(ratings) / len(ratings), total_reviews=len(ratings))
        therapist = self.therapists.get(review.therapist_id)
        therapist.average_rating = stats.average_rating
        therapist.total_reviews = stats.total_reviews
        return stats

    def list_for_therapist(self, therapist_id, offset, limit):
        matching = sorted(
            (review for review in self.rows if review.therapist_id == therapist_id),
            key=lambda review: review.created_at,
            reverse=True,
        )
        return matching[offset:offset + limit], len(matching)


@dataclass
class Stores:
    """One storage backend plus helpers for seeding it."""

    backend: str
    users: object
    therapists: object
    appointments: object
    availability: object
    reviews: object
    db: object = None
    _counter: list = field(default_factory=lambda: [0])

    def _save(self, obj):
        if self.db is not None:
            self.db.add(obj)
            self.db.commit()
            return obj

        if isinstance(obj, User):
            self.users.rows[obj.id] = obj
        elif isinstance(obj, Therapist):
            self.therapists.rows[obj.id] = obj
        elif isinstance(obj, Appointment):
            self.appointments.rows[obj.id] = obj
        elif isinstance(obj, AvailabilityWindow):
            self.availability.windows.append(obj)
        elif isinstance(obj, BlockedSlot):
            self.availability.blocked.append(obj)
        return obj

    def _next_id(self, prefix):
        self._counter[0] += 1
        return f'{prefix}-{self._counter[0]}'

    def add_user(self, first_name, last_name, role):
        user_id = self._next_id(role)
        return self._save(
            User(id=user_id, email=f'{user_id}@example.com', first_name=first_name, last_name=last_name, role=role)
        )

    def add_therapist(
        self,
        user,
        timezone='UTC',
        professional_title='Licensed Therapist',
        hourly_rate=None,
        average_rating=0.0,
        is_online=False,
    ):
        return self._save(
            Therapist(
                id=self._next_id('therapist-profile'),
                user_id=user.id,
                professional_title=professional_title,
                timezone=timezone,
                hourly_rate=hourly_rate,
                average_rating=average_rating,
                total_reviews=0,
                is_online=is_online,
            )
        )

    def add_window(self, therapist, day_of_week, start, end, is_active=True):
        return self._save(
            AvailabilityWindow(
                id=self._next_id('window'),
                therapist_id=therapist.id,
                day_of_week=day_of_week,
                start_time=start,
                end_time=end,
                is_active=is_active,
            )
        )

    def add_appointment(self, therapist, patient_id, scheduled_at, status='PENDING', amount=10000, duration_minutes=60):
        return self._save(
            Appointment(
                id=self._next_id('appointment'),
                patient_id=patient_id,
                therapist_id=therapist.id,
                scheduled_at=scheduled_at,
                timezone='UTC',
                duration_minutes=duration_minutes,
                type='SCHEDULED',
                status=status,
                amount=amount,
                created_at=FIXED_NOW,
                updated_at=FIXED_NOW,
            )
        )

    def add_blocked(self, therapist, starts_at, ends_at, reason=None):
        return self._save(
            BlockedSlot(
                id=self._next_id('blocked'),
                therapist_id=therapist.id,
                starts_at=starts_at,
                ends_at=ends_at,
                reason=reason,
            )
        )


@pytest.fixture
def db_session():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(params=['sqlalchemy', 'memory'])
def stores(request):
    if request.param == 'sqlalchemy':
        db = request.getfixturevalue('db_session')
        return Stores(
            backend='sqlalchemy',
            users=SqlUserStore(db),
            therapists=SqlTherapistStore(db),
            appointments=SqlAppointmentStore(db),
            availability=SqlAvailabilityStore(db),
            reviews=SqlReviewStore(db),
            db=db,
        )

    users = InMemoryUserStore()
    therapists = InMemoryTherapistStore(users)
    return Stores(
        backend='memory',
        users=users,
        therapists=therapists,
        appointments=InMemoryAppointmentStore(),
        availability=InMemoryAvailabilityStore(),
        reviews=InMemoryReviewStore(therapists),
    )


@pytest.fixture
def clock():
    return FixedClock(FIXED_NOW)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def dispatcher(sender):
    return NotificationDispatcher(sender, timeout_seconds=0)


@pytest.fixture
def people(stores):
    patient_user = stores.add_user('Pat', 'Jones', 'patient')
    other_patient_user = stores.add_user('Olive', 'Stone', 'patient')
    therapist_user = stores.add_user('Tara', 'Reed', 'therapist')
    other_therapist_user = stores.add_user('Omar', 'Hale', 'therapist')

    therapist = stores.add_therapist(therapist_user)
    other_therapist = stores.add_therapist(other_therapist_user)

    return SimpleNamespace(
        therapist=therapist,
        other_therapist=other_therapist,
        patient=Actor(id=patient_user.id, role=ActorRole.PATIENT),
        other_patient=Actor(id=other_patient_user.id, role=ActorRole.PATIENT),
        therapist_actor=Actor(id=therapist_user.id, role=ActorRole.THERAPIST),
        other_therapist_actor=Actor(id=other_therapist_user.id, role=ActorRole.THERAPIST),
        admin=Actor(id='admin-1', role=ActorRole.ADMIN),
    )


@pytest.fixture
def scheduling_service(stores, dispatcher, clock):
    return SchedulingService(
        appointments=stores.appointments,
        therapists=stores.therapists,
        users=stores.users,
        notifications=dispatcher,
        clock=clock,
    )


@pytest.fixture
def review_service(stores, clock):
    return ReviewService(appointments=stores.appointments, reviews=stores.reviews, clock=clock)


@pytest.fixture
def availability_service(stores):
    return AvailabilityService(
        therapists=stores.therapists,
        availability=stores.availability,
        appointments=stores.appointments,
    )


@pytest.fixture
def directory(stores):
    return TherapistDirectory(therapists=stores.therapists)


@pytest.fixture
def failing_sender():
    return FailingSender()


@pytest.fixture
def payments():
    return RecordingPaymentProcessor()
