import logging

from telehealth.models.therapist import Therapist
from telehealth.scheduling.errors import ForbiddenError, NotFoundError, ValidationFailedError
from telehealth.scheduling.repositories import TherapistFilters, TherapistStore
from telehealth.scheduling.state_machine import Actor, ActorRole

logger = logging.getLogger(__name__)

DEFAULT_DIRECTORY_PAGE_SIZE = 20
MAX_RATING = 5

ONLY_THERAPISTS_MESSAGE = 'Only therapists can update their status.'


class TherapistDirectory:
    """Therapist discovery: filtered search, instant-call candidates and the online flag."""

    def __init__(self, therapists: TherapistStore):
        self.therapists = therapists

    def search(
        self,
        filters: TherapistFilters,
        page: int = 1,
        limit: int = DEFAULT_DIRECTORY_PAGE_SIZE,
    ) -> tuple[list[Therapist], int]:
        if page < 1 or limit < 1:
            raise ValidationFailedError('Page and limit must be positive.')
        if filters.min_rating is not None and not 0 <= filters.min_rating <= MAX_RATING:
            raise ValidationFailedError(f'Minimum rating must be between 0 and {MAX_RATING}.')
        if filters.max_price is not None and filters.max_price < 0:
            raise ValidationFailedError('Maximum price cannot be negative.')

        offset = (page - 1) * limit
        return self.therapists.search(filters, offset, limit)

    def available_for_instant_call(self, limit: int = DEFAULT_DIRECTORY_PAGE_SIZE) -> list[Therapist]:
        return self.therapists.list_online(limit)

    def set_online_status(self, actor: Actor, is_online: bool) -> Therapist:
        if actor.role != ActorRole.THERAPIST:
            raise ForbiddenError(ONLY_THERAPISTS_MESSAGE)

        therapist = self.therapists.get_by_user_id(actor.id)
        if therapist is None:
            raise ForbiddenError(ONLY_THERAPISTS_MESSAGE)

        updated = self.therapists.set_online(therapist.id, is_online)
        if updated is None:
            raise NotFoundError('Therapist not found.')

        logger.info('Therapist %s is now %s', therapist.id, 'online' if is_online else 'offline')
        return updated
