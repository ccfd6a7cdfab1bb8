from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, field_serializer
from sqlalchemy.orm import Session

from telehealth.auth.dependencies import get_current_actor
from telehealth.routes.dependencies import (
    build_review_service,
    build_scheduling_service,
    ensure_database_ready,
    get_db,
    get_notification_dispatcher,
    get_payment_processor,
    translate_errors,
)
from telehealth.scheduling.notifications import NotificationDispatcher
from telehealth.scheduling.payments import PaymentProcessor, hand_off_refund
from telehealth.scheduling.repositories import PAST, UPCOMING
from telehealth.scheduling.schemas import (
    BookAppointmentRequest,
    CancelAppointmentRequest,
    CompleteAppointmentRequest,
    DeclineAppointmentRequest,
    SubmitReviewRequest,
)
from telehealth.scheduling.state_machine import Actor
from telehealth.scheduling.timeutils import isoformat_utc

router = APIRouter(tags=['appointments'])


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    therapist_id: str
    scheduled_at: datetime
    timezone: str
    duration_minutes: int
    type: str
    status: str
    amount: int
    booking_notes: str | None = None
    session_notes: str | None = None
    cancellation_reason: str | None = None
    confirmed_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime | None = None

    @field_serializer('scheduled_at', 'confirmed_at', 'completed_at', 'cancelled_at', 'created_at')
    def serialize_timestamp(self, value: datetime | None) -> str | None:
        return isoformat_utc(value)


class CancellationResponse(BaseModel):
    appointment: AppointmentResponse
    refund_percentage: int
    refund_amount: int
    requires_manual_review: bool
    refund_requested: bool


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    appointment_id: str
    therapist_id: str
    patient_id: str | None = None
    rating: int
    feedback: str | None = None
    tags: list[str]
    is_anonymous: bool
    created_at: datetime | None = None

    @field_serializer('created_at')
    def serialize_timestamp(self, value: datetime | None) -> str | None:
        return isoformat_utc(value)


class SubmittedReviewResponse(BaseModel):
    review: ReviewResponse
    therapist_average_rating: float
    therapist_total_reviews: int


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: BookAppointmentRequest,
    actor: Actor = Depends(get_current_actor),
    notifications: NotificationDispatcher = Depends(get_notification_dispatcher),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        appointment = build_scheduling_service(db, notifications).book(actor, data)
        return AppointmentResponse.model_validate(appointment)


@router.get('', response_model=list[AppointmentResponse])
def list_my_appointments(
    scope: str | None = Query(default=None, alias='status', pattern=f'^({UPCOMING}|{PAST})$'),
    actor: Actor = Depends(get_current_actor),
    notifications: NotificationDispatcher = Depends(get_notification_dispatcher),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        appointments = build_scheduling_service(db, notifications).list_for_actor(actor, scope)
        return [AppointmentResponse.model_validate(appointment) for appointment in appointments]


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    actor: Actor = Depends(get_current_actor),
    notifications: NotificationDispatcher = Depends(get_notification_dispatcher),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        appointment = build_scheduling_service(db, notifications).get_for_actor(actor, appointment_id)
        return AppointmentResponse.model_validate(appointment)


@router.patch('/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_appointment(
    appointment_id: str,
    actor: Actor = Depends(get_current_actor),
    notifications: NotificationDispatcher = Depends(get_notification_dispatcher),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        appointment = build_scheduling_service(db, notifications).confirm(actor, appointment_id)
        return AppointmentResponse.model_validate(appointment)


@router.patch('/{appointment_id}/decline', response_model=AppointmentResponse)
def decline_appointment(
    appointment_id: str,
    data: DeclineAppointmentRequest | None = None,
    actor: Actor = Depends(get_current_actor),
    notifications: NotificationDispatcher = Depends(get_notification_dispatcher),
    db: Session = Depends(get_db),
):
    ensure_database_ready()
    reason = data.reason if data else None

    with translate_errors(db):
        appointment = build_scheduling_service(db, notifications).decline(actor, appointment_id, reason)
        return AppointmentResponse.model_validate(appointment)


@router.patch('/{appointment_id}/cancel', response_model=CancellationResponse)
def cancel_appointment(
    appointment_id: str,
    data: CancelAppointmentRequest,
    actor: Actor = Depends(get_current_actor),
    notifications: NotificationDispatcher = Depends(get_notification_dispatcher),
    payments: PaymentProcessor = Depends(get_payment_processor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        outcome = build_scheduling_service(db, notifications).cancel(actor, appointment_id, data.reason)
        appointment = outcome.appointment
        refund_requested = hand_off_refund(payments, appointment.id, appointment.amount, outcome.refund)

        return CancellationResponse(
            appointment=AppointmentResponse.model_validate(appointment),
            refund_percentage=outcome.refund.percentage,
            refund_amount=outcome.refund.refund_amount,
            requires_manual_review=outcome.refund.requires_manual_review,
            refund_requested=refund_requested,
        )


@router.patch('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: str,
    data: CompleteAppointmentRequest | None = None,
    actor: Actor = Depends(get_current_actor),
    notifications: NotificationDispatcher = Depends(get_notification_dispatcher),
    db: Session = Depends(get_db),
):
    ensure_database_ready()
    session_notes = data.session_notes if data else None

    with translate_errors(db):
        appointment = build_scheduling_service(db, notifications).complete(actor, appointment_id, session_notes)
        return AppointmentResponse.model_validate(appointment)


@router.patch('/{appointment_id}/no-show', response_model=AppointmentResponse)
def mark_appointment_no_show(
    appointment_id: str,
    actor: Actor = Depends(get_current_actor),
    notifications: NotificationDispatcher = Depends(get_notification_dispatcher),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        appointment = build_scheduling_service(db, notifications).mark_no_show(actor, appointment_id)
        return AppointmentResponse.model_validate(appointment)


@router.post('/{appointment_id}/review', response_model=SubmittedReviewResponse, status_code=status.HTTP_201_CREATED)
def submit_review(
    appointment_id: str,
    data: SubmitReviewRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        outcome = build_review_service(db).submit_review(actor, appointment_id, data)
        return SubmittedReviewResponse(
            review=ReviewResponse.model_validate(outcome.review),
            therapist_average_rating=outcome.stats.average_rating,
            therapist_total_reviews=outcome.stats.total_reviews,
        )
