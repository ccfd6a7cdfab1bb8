from datetime import date, datetime, time
from math import ceil

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, field_serializer
from sqlalchemy.orm import Session

from telehealth.auth.dependencies import get_current_actor
from telehealth.routes.appointment_routes import ReviewResponse
from telehealth.routes.dependencies import (
    build_availability_service,
    build_review_service,
    build_therapist_directory,
    ensure_database_ready,
    get_db,
    translate_errors,
)
from telehealth.scheduling.directory import DEFAULT_DIRECTORY_PAGE_SIZE, MAX_RATING
from telehealth.scheduling.repositories import SqlTherapistStore, SqlUserStore, TherapistFilters
from telehealth.scheduling.schemas import UpdateOnlineStatusRequest
from telehealth.scheduling.state_machine import Actor
from telehealth.scheduling.timeutils import isoformat_utc

router = APIRouter(tags=['therapists'])

MAX_SLOT_MINUTES = 240
MAX_REVIEWS_PAGE_SIZE = 50
MAX_DIRECTORY_PAGE_SIZE = 100


class TherapistResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    first_name: str | None = None
    last_name: str | None = None
    professional_title: str | None = None
    timezone: str
    hourly_rate: int | None = None
    average_rating: float
    total_reviews: int
    is_online: bool = False


class AvailableSlotResponse(BaseModel):
    start_time: time
    end_time: time
    starts_at: datetime
    ends_at: datetime

    @field_serializer('starts_at', 'ends_at')
    def serialize_timestamp(self, value: datetime) -> str | None:
        return isoformat_utc(value)


class AvailabilityResponse(BaseModel):
    therapist_id: str
    date: date
    timezone: str
    slots: list[AvailableSlotResponse]


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class ReviewPageResponse(BaseModel):
    data: list[ReviewResponse]
    meta: PageMeta


class TherapistPageResponse(BaseModel):
    data: list[TherapistResponse]
    meta: PageMeta


def review_for_listing(review) -> ReviewResponse:
    response = ReviewResponse.model_validate(review)
    if response.is_anonymous:
        response.patient_id = None
    return response


def therapist_to_response(therapist, user=None) -> TherapistResponse:
    user = user or therapist.user
    return TherapistResponse(
        id=therapist.id,
        user_id=therapist.user_id,
        first_name=user.first_name if user else None,
        last_name=user.last_name if user else None,
        professional_title=therapist.professional_title,
        timezone=therapist.timezone,
        hourly_rate=therapist.hourly_rate,
        average_rating=therapist.average_rating or 0.0,
        total_reviews=therapist.total_reviews or 0,
        is_online=bool(therapist.is_online),
    )


@router.get('', response_model=TherapistPageResponse)
def list_therapists(
    search: str | None = Query(default=None, max_length=100),
    min_rating: float | None = Query(default=None, ge=0, le=MAX_RATING),
    max_price: int | None = Query(default=None, ge=0),
    is_online: bool | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_DIRECTORY_PAGE_SIZE, ge=1, le=MAX_DIRECTORY_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        filters = TherapistFilters(
            search=search.strip() if search and search.strip() else None,
            min_rating=min_rating,
            max_price=max_price,
            is_online=is_online,
        )
        therapists, total = build_therapist_directory(db).search(filters, page, limit)

        return TherapistPageResponse(
            data=[therapist_to_response(therapist) for therapist in therapists],
            meta=PageMeta(
                total=total,
                page=page,
                limit=limit,
                total_pages=ceil(total / limit),
            ),
        )


@router.patch('/me/status', response_model=TherapistResponse)
def update_my_online_status(
    data: UpdateOnlineStatusRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        therapist = build_therapist_directory(db).set_online_status(actor, data.is_online)
        return therapist_to_response(therapist)


@router.get('/instant-call/available', response_model=list[TherapistResponse])
def list_instant_call_therapists(
    limit: int = Query(default=DEFAULT_DIRECTORY_PAGE_SIZE, ge=1, le=MAX_DIRECTORY_PAGE_SIZE),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        therapists = build_therapist_directory(db).available_for_instant_call(limit)
        return [therapist_to_response(therapist) for therapist in therapists]


@router.get('/{therapist_id}', response_model=TherapistResponse)
def get_therapist(therapist_id: str, db: Session = Depends(get_db)):
    ensure_database_ready()

    with translate_errors(db):
        therapist = SqlTherapistStore(db).get(therapist_id)
        if therapist is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Therapist not found.',
            )

        return therapist_to_response(therapist, SqlUserStore(db).get(therapist.user_id))


@router.get('/{therapist_id}/availability', response_model=AvailabilityResponse)
def get_therapist_availability(
    therapist_id: str,
    on_date: date = Query(..., alias='date'),
    slot_minutes: int | None = Query(default=None, ge=1, le=MAX_SLOT_MINUTES),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        slots = build_availability_service(db).get_available_slots(therapist_id, on_date, slot_minutes)
        therapist = SqlTherapistStore(db).get(therapist_id)

        return AvailabilityResponse(
            therapist_id=therapist_id,
            date=on_date,
            timezone=therapist.timezone,
            slots=[
                AvailableSlotResponse(
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    starts_at=slot.starts_at,
                    ends_at=slot.ends_at,
                )
                for slot in slots
            ],
        )


@router.get('/{therapist_id}/reviews', response_model=ReviewPageResponse)
def list_therapist_reviews(
    therapist_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=MAX_REVIEWS_PAGE_SIZE),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with translate_errors(db):
        if SqlTherapistStore(db).get(therapist_id) is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Therapist not found.',
            )

        reviews, total = build_review_service(db).list_for_therapist(therapist_id, page, limit)

        return ReviewPageResponse(
            data=[review_for_listing(review) for review in reviews],
            meta=PageMeta(
                total=total,
                page=page,
                limit=limit,
                total_pages=ceil(total / limit),
            ),
        )
