from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from telehealth.models.appointment import AppointmentType
from telehealth.scheduling.timeutils import is_known_timezone, to_utc_naive

MAX_APPOINTMENT_NOTES_LENGTH = 600
MAX_SESSION_NOTES_LENGTH = 5000
MAX_REASON_LENGTH = 500
MAX_FEEDBACK_LENGTH = 2000
MAX_REVIEW_TAGS = 10
MAX_DURATION_MINUTES = 480


def _normalize_optional_text(value: str | None, max_length: int, label: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValueError(f'{label} must be {max_length} characters or fewer.')

    return normalized


class BookAppointmentRequest(BaseModel):
    therapist_id: str
    scheduled_at: datetime
    duration_minutes: int = Field(gt=0, le=MAX_DURATION_MINUTES)
    timezone: str
    type: AppointmentType = AppointmentType.SCHEDULED
    booking_notes: str | None = None
    amount: int = Field(ge=0)

    @field_validator('therapist_id')
    @classmethod
    def validate_therapist_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Therapist is required.')
        return normalized

    @field_validator('scheduled_at')
    @classmethod
    def validate_scheduled_at(cls, value: datetime) -> datetime:
        return to_utc_naive(value).replace(microsecond=0)

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        normalized = value.strip()
        if not is_known_timezone(normalized):
            raise ValueError('Unknown timezone.')
        return normalized

    @field_validator('booking_notes')
    @classmethod
    def validate_booking_notes(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_APPOINTMENT_NOTES_LENGTH, 'Notes')


class CancelAppointmentRequest(BaseModel):
    reason: str

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = _normalize_optional_text(value, MAX_REASON_LENGTH, 'Reason')
        if normalized is None:
            raise ValueError('A cancellation reason is required.')
        return normalized


class DeclineAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_REASON_LENGTH, 'Reason')


class CompleteAppointmentRequest(BaseModel):
    session_notes: str | None = None

    @field_validator('session_notes')
    @classmethod
    def validate_session_notes(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_SESSION_NOTES_LENGTH, 'Session notes')


class SubmitReviewRequest(BaseModel):
    rating: int = Field(ge=1, le=5, strict=True)
    feedback: str | None = None
    tags: list[str] = Field(default_factory=list)
    is_anonymous: bool = False

    @field_validator('feedback')
    @classmethod
    def validate_feedback(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_FEEDBACK_LENGTH, 'Feedback')

    @field_validator('tags')
    @classmethod
    def validate_tags(cls, value: list[str]) -> list[str]:
        normalized: list[str] = []
        for tag in value:
            cleaned = tag.strip().lower()
            if cleaned and cleaned not in normalized:
                normalized.append(cleaned)

        if len(normalized) > MAX_REVIEW_TAGS:
            raise ValueError(f'At most {MAX_REVIEW_TAGS} tags are allowed.')

        return normalized


class UpdateOnlineStatusRequest(BaseModel):
    is_online: bool
