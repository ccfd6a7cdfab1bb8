"""Appointment lifecycle rules: which actions move which statuses, and who may take them."""

from dataclasses import dataclass
from enum import Enum

from telehealth.models.appointment import TERMINAL_STATUSES, AppointmentStatus
from telehealth.scheduling.errors import ForbiddenError, InvalidStateError


class ActorRole(str, Enum):
    PATIENT = "patient"
    THERAPIST = "therapist"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    """An authenticated caller as supplied by the identity provider."""

    id: str
    role: ActorRole


class AppointmentAction(str, Enum):
    CONFIRM = "confirm"
    DECLINE = "decline"
    CANCEL = "cancel"
    COMPLETE = "complete"
    MARK_NO_SHOW = "mark_no_show"


@dataclass(frozen=True)
class Transition:
    sources: frozenset[AppointmentStatus]
    target: AppointmentStatus
    roles: frozenset[ActorRole]


TRANSITIONS: dict[AppointmentAction, Transition] = {
    AppointmentAction.CONFIRM: Transition(
        sources=frozenset({AppointmentStatus.PENDING}),
        target=AppointmentStatus.CONFIRMED,
        roles=frozenset({ActorRole.THERAPIST}),
    ),
    AppointmentAction.DECLINE: Transition(
        sources=frozenset({AppointmentStatus.PENDING}),
        target=AppointmentStatus.CANCELLED,
        roles=frozenset({ActorRole.THERAPIST}),
    ),
    AppointmentAction.CANCEL: Transition(
        sources=frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED}),
        target=AppointmentStatus.CANCELLED,
        roles=frozenset({ActorRole.PATIENT, ActorRole.THERAPIST}),
    ),
    AppointmentAction.COMPLETE: Transition(
        sources=frozenset({AppointmentStatus.CONFIRMED}),
        target=AppointmentStatus.COMPLETED,
        roles=frozenset({ActorRole.THERAPIST}),
    ),
    AppointmentAction.MARK_NO_SHOW: Transition(
        sources=frozenset({AppointmentStatus.CONFIRMED}),
        target=AppointmentStatus.NO_SHOW,
        roles=frozenset({ActorRole.THERAPIST}),
    ),
}

_INVALID_STATE_MESSAGES = {
    AppointmentAction.CONFIRM: 'Appointment cannot be confirmed.',
    AppointmentAction.DECLINE: 'Only pending appointments can be declined.',
    AppointmentAction.CANCEL: 'Appointment cannot be cancelled.',
    AppointmentAction.COMPLETE: 'Only confirmed appointments can be completed.',
    AppointmentAction.MARK_NO_SHOW: 'Only confirmed appointments can be marked as no-show.',
}


def is_terminal(status: str) -> bool:
    return AppointmentStatus(status) in TERMINAL_STATUSES


def is_party(actor: Actor, *, patient_id: str, therapist_user_id: str) -> bool:
    if actor.role == ActorRole.PATIENT:
        return actor.id == patient_id
    if actor.role == ActorRole.THERAPIST:
        return actor.id == therapist_user_id
    return False


def authorize(action: AppointmentAction, actor: Actor, *, patient_id: str, therapist_user_id: str) -> None:
    """Raise ``ForbiddenError`` unless ``actor`` may perform ``action`` on this appointment.

    A therapist acts on an appointment only when they own the appointment's
    therapist profile; a patient only on their own booking.
    """
    transition = TRANSITIONS[action]

    if actor.role not in transition.roles:
        raise ForbiddenError('Not authorized.')

    if not is_party(actor, patient_id=patient_id, therapist_user_id=therapist_user_id):
        raise ForbiddenError('Not authorized.')


def next_status(action: AppointmentAction, current: str) -> AppointmentStatus:
    """Return the status ``action`` leads to from ``current`` or raise ``InvalidStateError``."""
    transition = TRANSITIONS[action]

    if is_terminal(current) or AppointmentStatus(current) not in transition.sources:
        raise InvalidStateError(_INVALID_STATE_MESSAGES[action])

    return transition.target
