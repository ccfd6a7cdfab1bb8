import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from telehealth.database import generate_uuid
from telehealth.models.appointment import AppointmentStatus
from telehealth.models.review import Review
from telehealth.scheduling.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from telehealth.scheduling.repositories import DUPLICATE_REVIEW_MESSAGE, AppointmentStore, ReviewStore, TherapistStats
from telehealth.scheduling.schemas import SubmitReviewRequest
from telehealth.scheduling.state_machine import Actor, ActorRole
from telehealth.scheduling.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewOutcome:
    review: Review
    stats: TherapistStats


class ReviewService:
    """Attaches a patient's review to a completed appointment and refreshes therapist ratings."""

    def __init__(
        self,
        appointments: AppointmentStore,
        reviews: ReviewStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.appointments = appointments
        self.reviews = reviews
        self.clock = clock

    def submit_review(self, actor: Actor, appointment_id: str, request: SubmitReviewRequest) -> ReviewOutcome:
        appointment = self.appointments.get(appointment_id)
        if appointment is None:
            raise NotFoundError('Appointment not found.')

        if actor.role != ActorRole.PATIENT or appointment.patient_id != actor.id:
            raise ForbiddenError('Only the patient of this appointment can review it.')

        if appointment.status != AppointmentStatus.COMPLETED:
            raise InvalidStateError('Can only review completed appointments.')

        if self.reviews.get_for_appointment(appointment.id) is not None:
            raise ConflictError(DUPLICATE_REVIEW_MESSAGE)

        review = Review(
            id=generate_uuid(),
            appointment_id=appointment.id,
            patient_id=actor.id,
            therapist_id=appointment.therapist_id,
            rating=request.rating,
            feedback=request.feedback,
            tags=list(request.tags),
            is_anonymous=request.is_anonymous,
            created_at=self.clock(),
        )
        stats = self.reviews.add_and_recompute(review)
        logger.info(
            'Review %s added for therapist %s; average %.2f over %s reviews',
            review.id,
            review.therapist_id,
            stats.average_rating,
            stats.total_reviews,
        )
        return ReviewOutcome(review=review, stats=stats)

    def list_for_therapist(self, therapist_id: str, page: int = 1, limit: int = 10) -> tuple[list[Review], int]:
        offset = (page - 1) * limit
        return self.reviews.list_for_therapist(therapist_id, offset, limit)
