"""Booking and lifecycle transitions for appointments."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from telehealth.database import generate_uuid
from telehealth.models.appointment import Appointment, AppointmentStatus
from telehealth.models.therapist import Therapist
from telehealth.scheduling import state_machine
from telehealth.scheduling.errors import ForbiddenError, InvalidStateError, NotFoundError
from telehealth.scheduling.notifications import (
    DEFAULT_PATIENT_NAME,
    NotificationDispatcher,
    NotificationKind,
    format_person_name,
    format_therapist_name,
)
from telehealth.scheduling.refund_policy import RefundDecision, compute_refund
from telehealth.scheduling.repositories import AppointmentStore, TherapistStore, UserStore
from telehealth.scheduling.schemas import BookAppointmentRequest
from telehealth.scheduling.state_machine import Actor, ActorRole, AppointmentAction
from telehealth.scheduling.timeutils import format_local_datetime, utcnow

logger = logging.getLogger(__name__)

DEFAULT_DECLINE_REASON = 'Declined by therapist'


@dataclass(frozen=True)
class CancellationOutcome:
    appointment: Appointment
    refund: RefundDecision
    cancelled_by: ActorRole


class SchedulingService:
    """Creates appointments and moves them through their lifecycle.

    Every mutation is checked in the order: appointment exists, actor is the
    party of record, current status allows the action. The status update is
    conditioned on the status that was read, so a concurrent transition makes
    this one fail with ``InvalidStateError`` instead of overwriting it.
    Notifications go out only after the change is committed.
    """

    def __init__(
        self,
        appointments: AppointmentStore,
        therapists: TherapistStore,
        users: UserStore,
        notifications: NotificationDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.appointments = appointments
        self.therapists = therapists
        self.users = users
        self.notifications = notifications
        self.clock = clock

    def book(self, actor: Actor, request: BookAppointmentRequest) -> Appointment:
        if actor.role != ActorRole.PATIENT:
            raise ForbiddenError('Only patients can book appointments.')

        therapist = self.therapists.get(request.therapist_id)
        if therapist is None:
            raise NotFoundError('Therapist not found.')

        now = self.clock()
        appointment = Appointment(
            id=generate_uuid(),
            patient_id=actor.id,
            therapist_id=therapist.id,
            scheduled_at=request.scheduled_at,
            timezone=request.timezone,
            duration_minutes=request.duration_minutes,
            type=request.type.value,
            status=AppointmentStatus.PENDING.value,
            amount=request.amount,
            booking_notes=request.booking_notes,
            created_at=now,
            updated_at=now,
        )
        appointment = self.appointments.create_pending(appointment)
        logger.info('Appointment %s booked with therapist %s', appointment.id, therapist.id)

        self.notifications.dispatch(
            therapist.user_id,
            NotificationKind.BOOKING_REQUEST,
            {
                'appointment_id': appointment.id,
                'patient_name': self._patient_name(appointment.patient_id),
                'date_time': format_local_datetime(appointment.scheduled_at, appointment.timezone),
            },
        )
        return appointment

    def get_for_actor(self, actor: Actor, appointment_id: str) -> Appointment:
        appointment, therapist = self._load(appointment_id)
        if not state_machine.is_party(actor, patient_id=appointment.patient_id, therapist_user_id=therapist.user_id):
            raise ForbiddenError('Not authorized.')
        return appointment

    def list_for_actor(self, actor: Actor, scope: str | None = None) -> list[Appointment]:
        now = self.clock()
        if actor.role == ActorRole.PATIENT:
            return self.appointments.list_for_patient(actor.id, scope, now)

        if actor.role == ActorRole.THERAPIST:
            therapist = self.therapists.get_by_user_id(actor.id)
            if therapist is None:
                raise ForbiddenError('Therapist profile not found.')
            return self.appointments.list_for_therapist(therapist.id, scope, now)

        raise ForbiddenError('Not authorized.')

    def confirm(self, actor: Actor, appointment_id: str) -> Appointment:
        appointment, therapist = self._load(appointment_id)
        now = self.clock()

        updated = self._apply(
            AppointmentAction.CONFIRM,
            actor,
            appointment,
            therapist,
            {'confirmed_at': now},
        )

        self.notifications.dispatch(
            updated.patient_id,
            NotificationKind.BOOKING_CONFIRMED,
            {
                'appointment_id': updated.id,
                'therapist_name': self._therapist_name(therapist),
                'date_time': format_local_datetime(updated.scheduled_at, updated.timezone),
            },
        )
        return updated

    def decline(self, actor: Actor, appointment_id: str, reason: str | None = None) -> Appointment:
        appointment, therapist = self._load(appointment_id)
        now = self.clock()

        updated = self._apply(
            AppointmentAction.DECLINE,
            actor,
            appointment,
            therapist,
            {'cancelled_at': now, 'cancellation_reason': reason or DEFAULT_DECLINE_REASON},
        )

        self.notifications.dispatch(
            updated.patient_id,
            NotificationKind.BOOKING_DECLINED,
            {
                'appointment_id': updated.id,
                'therapist_name': self._therapist_name(therapist),
                'reason': reason,
            },
        )
        return updated

    def cancel(self, actor: Actor, appointment_id: str, reason: str | None = None) -> CancellationOutcome:
        """Cancel on behalf of whichever party ``actor.role`` names and work out the refund.

        The refund is computed against the time of cancellation; moving money is
        left to the payment processor.
        """
        appointment, therapist = self._load(appointment_id)
        now = self.clock()

        updated = self._apply(
            AppointmentAction.CANCEL,
            actor,
            appointment,
            therapist,
            {'cancelled_at': now, 'cancellation_reason': reason},
        )
        refund = compute_refund(updated.scheduled_at, now, updated.amount)

        if actor.role == ActorRole.THERAPIST:
            recipient_id = updated.patient_id
            cancelled_by_name = self._therapist_name(therapist)
        else:
            recipient_id = therapist.user_id
            cancelled_by_name = self._patient_name(updated.patient_id)

        self.notifications.dispatch(
            recipient_id,
            NotificationKind.APPOINTMENT_CANCELLED,
            {
                'appointment_id': updated.id,
                'cancelled_by': cancelled_by_name,
                'date_time': format_local_datetime(updated.scheduled_at, updated.timezone),
                'reason': reason,
            },
        )
        return CancellationOutcome(appointment=updated, refund=refund, cancelled_by=actor.role)

    def complete(self, actor: Actor, appointment_id: str, session_notes: str | None = None) -> Appointment:
        appointment, therapist = self._load(appointment_id)
        values: dict[str, Any] = {'completed_at': self.clock()}
        if session_notes is not None:
            values['session_notes'] = session_notes

        return self._apply(AppointmentAction.COMPLETE, actor, appointment, therapist, values)

    def mark_no_show(self, actor: Actor, appointment_id: str) -> Appointment:
        appointment, therapist = self._load(appointment_id)
        now = self.clock()

        state_machine.authorize(
            AppointmentAction.MARK_NO_SHOW,
            actor,
            patient_id=appointment.patient_id,
            therapist_user_id=therapist.user_id,
        )
        state_machine.next_status(AppointmentAction.MARK_NO_SHOW, appointment.status)
        if now < appointment.scheduled_at:
            raise InvalidStateError('An appointment cannot be marked as no-show before it starts.')

        return self._apply(AppointmentAction.MARK_NO_SHOW, actor, appointment, therapist, {})

    def _load(self, appointment_id: str) -> tuple[Appointment, Therapist]:
        appointment = self.appointments.get(appointment_id)
        if appointment is None:
            raise NotFoundError('Appointment not found.')

        therapist = self.therapists.get(appointment.therapist_id)
        if therapist is None:
            raise NotFoundError('Therapist not found.')

        return appointment, therapist

    def _apply(
        self,
        action: AppointmentAction,
        actor: Actor,
        appointment: Appointment,
        therapist: Therapist,
        values: dict[str, Any],
    ) -> Appointment:
        state_machine.authorize(
            action,
            actor,
            patient_id=appointment.patient_id,
            therapist_user_id=therapist.user_id,
        )
        current_status = appointment.status
        target = state_machine.next_status(action, current_status)

        updated = self.appointments.transition(
            appointment.id,
            frozenset({current_status}),
            {**values, 'status': target.value, 'updated_at': self.clock()},
        )
        if updated is None:
            # Another request moved the appointment after we read it.
            raise InvalidStateError(f'Appointment is no longer {current_status.lower()}.')

        logger.info(
            'Appointment %s %s -> %s by %s %s',
            appointment.id,
            current_status,
            target.value,
            actor.role.value,
            actor.id,
        )
        return updated

    def _patient_name(self, patient_id: str) -> str:
        patient = self.users.get(patient_id)
        if patient is None:
            return DEFAULT_PATIENT_NAME
        return format_person_name(patient.first_name, patient.last_name, DEFAULT_PATIENT_NAME)

    def _therapist_name(self, therapist: Therapist) -> str:
        user = self.users.get(therapist.user_id)
        if user is None:
            return format_therapist_name(None, None)
        return format_therapist_name(user.first_name, user.last_name)
