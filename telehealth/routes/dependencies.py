from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from telehealth.database import SessionLocal, ensure_scheduling_schema
from telehealth.scheduling.availability import AvailabilityService
from telehealth.scheduling.directory import TherapistDirectory
from telehealth.scheduling.errors import SchedulingError
from telehealth.scheduling.notifications import LoggingNotificationSender, NotificationDispatcher
from telehealth.scheduling.payments import LoggingPaymentProcessor, PaymentProcessor
from telehealth.scheduling.repositories import (
    SqlAppointmentStore,
    SqlAvailabilityStore,
    SqlReviewStore,
    SqlTherapistStore,
    SqlUserStore,
)
from telehealth.scheduling.reviews import ReviewService
from telehealth.scheduling.service import SchedulingService

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

_notification_dispatcher = NotificationDispatcher(LoggingNotificationSender())
_payment_processor = LoggingPaymentProcessor()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_notification_dispatcher() -> NotificationDispatcher:
    return _notification_dispatcher


def get_payment_processor() -> PaymentProcessor:
    return _payment_processor


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@contextmanager
def translate_errors(db: Session | None = None) -> Iterator[None]:
    """Turn scheduling and database failures into HTTP errors."""
    try:
        yield
    except SchedulingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    except SQLAlchemyError as exc:
        if db is not None:
            db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def build_scheduling_service(db: Session, notifications: NotificationDispatcher) -> SchedulingService:
    return SchedulingService(
        appointments=SqlAppointmentStore(db),
        therapists=SqlTherapistStore(db),
        users=SqlUserStore(db),
        notifications=notifications,
    )


def build_availability_service(db: Session) -> AvailabilityService:
    return AvailabilityService(
        therapists=SqlTherapistStore(db),
        availability=SqlAvailabilityStore(db),
        appointments=SqlAppointmentStore(db),
    )


def build_review_service(db: Session) -> ReviewService:
    return ReviewService(
        appointments=SqlAppointmentStore(db),
        reviews=SqlReviewStore(db),
    )


def build_therapist_directory(db: Session) -> TherapistDirectory:
    return TherapistDirectory(therapists=SqlTherapistStore(db))
