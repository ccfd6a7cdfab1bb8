"""Errors raised by the scheduling core.

Each carries the HTTP status the routes translate it to.
"""


class SchedulingError(Exception):
    """Base class for scheduling failures surfaced to the caller."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(SchedulingError):
    """The referenced therapist, appointment or review subject does not exist."""

    status_code = 404


class ConflictError(SchedulingError):
    """The slot is taken by an active appointment, or the review already exists."""

    status_code = 409


class InvalidStateError(SchedulingError):
    """The appointment's current status does not permit the requested transition."""

    status_code = 409


class ForbiddenError(SchedulingError):
    """The actor is not the patient or therapist of record."""

    status_code = 403


class ValidationFailedError(SchedulingError):
    """Input passed the request schema but is not usable by the core."""

    status_code = 400
