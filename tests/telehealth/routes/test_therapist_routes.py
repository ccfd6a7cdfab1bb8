from datetime import date, datetime, time, timedelta

import pytest
from fastapi import HTTPException

from telehealth.models.appointment import Appointment
from telehealth.models.availability import AvailabilityWindow, BlockedSlot
from telehealth.models.review import Review
from telehealth.models.therapist import Therapist
from telehealth.models.user import User
from telehealth.routes.therapist_routes import (
    get_therapist,
    get_therapist_availability,
    list_instant_call_therapists,
    list_therapist_reviews,
    list_therapists,
    router,
    update_my_online_status,
)
from telehealth.scheduling.schemas import UpdateOnlineStatusRequest
from telehealth.scheduling.state_machine import Actor, ActorRole

MONDAY = date(2024, 6, 3)


@pytest.fixture(autouse=True)
def database_ready(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('telehealth.routes.therapist_routes.ensure_database_ready', lambda: None)


@pytest.fixture
def seeded_db(db_session):
    db_session.add_all(
        [
            User(id='patient-user', email='pat@example.com', first_name='Pat', last_name='Jones', role='patient'),
            User(id='therapist-user', email='tara@example.com', first_name='Tara', last_name='Reed', role='therapist'),
            Therapist(
                id='therapist-1',
                user_id='therapist-user',
                professional_title='Clinical Psychologist',
                timezone='America/Chicago',
                hourly_rate=15000,
                average_rating=4.5,
                total_reviews=2,
            ),
            AvailabilityWindow(
                id='window-1',
                therapist_id='therapist-1',
                day_of_week=1,
                start_time=time(9, 0),
                end_time=time(12, 0),
                is_active=True,
            ),
        ]
    )
    db_session.commit()
    return db_session


def add_review(db, review_id: str, rating: int, created_at: datetime, is_anonymous: bool = False) -> None:
    db.add(
        Appointment(
            id=f'appointment-{review_id}',
            patient_id='patient-user',
            therapist_id='therapist-1',
            scheduled_at=created_at - timedelta(hours=2),
            timezone='UTC',
            duration_minutes=60,
            type='SCHEDULED',
            status='COMPLETED',
            amount=15000,
        )
    )
    db.add(
        Review(
            id=review_id,
            appointment_id=f'appointment-{review_id}',
            patient_id='patient-user',
            therapist_id='therapist-1',
            rating=rating,
            tags=['calm'],
            is_anonymous=is_anonymous,
            created_at=created_at,
        )
    )
    db.commit()


def test_get_therapist_returns_profile_with_name(seeded_db) -> None:
    response = get_therapist(therapist_id='therapist-1', db=seeded_db)

    assert response.first_name == 'Tara'
    assert response.last_name == 'Reed'
    assert response.timezone == 'America/Chicago'
    assert response.average_rating == 4.5
    assert response.total_reviews == 2


def test_get_missing_therapist_returns_404(seeded_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_therapist(therapist_id='missing', db=seeded_db)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Therapist not found.'


def test_availability_lists_free_slots_in_therapist_time(seeded_db) -> None:
    seeded_db.add(
        BlockedSlot(
            id='blocked-1',
            therapist_id='therapist-1',
            starts_at=datetime(2024, 6, 3, 15, 0),
            ends_at=datetime(2024, 6, 3, 16, 0),
        )
    )
    seeded_db.commit()

    response = get_therapist_availability(therapist_id='therapist-1', on_date=MONDAY, slot_minutes=60, db=seeded_db)

    assert response.timezone == 'America/Chicago'
    assert [slot.start_time for slot in response.slots] == [time(9, 0), time(11, 0)]
    payload = response.model_dump(mode='json')
    assert payload['slots'][0]['starts_at'] == '2024-06-03T14:00:00Z'
    assert payload['slots'][0]['ends_at'] == '2024-06-03T15:00:00Z'


def test_availability_on_day_without_windows_is_empty(seeded_db) -> None:
    response = get_therapist_availability(
        therapist_id='therapist-1',
        on_date=MONDAY + timedelta(days=1),
        slot_minutes=60,
        db=seeded_db,
    )

    assert response.slots == []


def test_availability_for_missing_therapist_returns_404(seeded_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_therapist_availability(therapist_id='missing', on_date=MONDAY, slot_minutes=60, db=seeded_db)

    assert exception_info.value.status_code == 404


def test_reviews_are_paginated_newest_first(seeded_db) -> None:
    add_review(seeded_db, 'review-1', 5, datetime(2024, 5, 1, 12, 0))
    add_review(seeded_db, 'review-2', 4, datetime(2024, 5, 2, 12, 0))
    add_review(seeded_db, 'review-3', 3, datetime(2024, 5, 3, 12, 0))

    first_page = list_therapist_reviews(therapist_id='therapist-1', page=1, limit=2, db=seeded_db)
    second_page = list_therapist_reviews(therapist_id='therapist-1', page=2, limit=2, db=seeded_db)

    assert [review.id for review in first_page.data] == ['review-3', 'review-2']
    assert [review.id for review in second_page.data] == ['review-1']
    assert first_page.meta.total == 3
    assert first_page.meta.total_pages == 2
    assert second_page.meta.page == 2


def test_anonymous_reviews_hide_the_patient(seeded_db) -> None:
    add_review(seeded_db, 'review-1', 5, datetime(2024, 5, 1, 12, 0), is_anonymous=True)
    add_review(seeded_db, 'review-2', 4, datetime(2024, 5, 2, 12, 0))

    page = list_therapist_reviews(therapist_id='therapist-1', page=1, limit=10, db=seeded_db)
    by_id = {review.id: review for review in page.data}

    assert by_id['review-1'].patient_id is None
    assert by_id['review-2'].patient_id == 'patient-user'


def test_reviews_for_missing_therapist_returns_404(seeded_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_therapist_reviews(therapist_id='missing', page=1, limit=10, db=seeded_db)

    assert exception_info.value.status_code == 404


def test_reviews_for_therapist_without_reviews(seeded_db) -> None:
    page = list_therapist_reviews(therapist_id='therapist-1', page=1, limit=10, db=seeded_db)

    assert page.data == []
    assert page.meta.total == 0
    assert page.meta.total_pages == 0


@pytest.fixture
def directory_db(seeded_db):
    seeded_db.add_all(
        [
            User(id='nina-user', email='nina@example.com', first_name='Nina', last_name='Park', role='therapist'),
            Therapist(
                id='therapist-2',
                user_id='nina-user',
                professional_title='Marriage Counselor',
                timezone='UTC',
                hourly_rate=9000,
                average_rating=4.0,
                total_reviews=1,
                is_online=True,
            ),
        ]
    )
    seeded_db.commit()
    return seeded_db


def search_therapists(db, **filters):
    arguments = {'search': None, 'min_rating': None, 'max_price': None, 'is_online': None, 'page': 1, 'limit': 20}
    arguments.update(filters)
    return list_therapists(db=db, **arguments)


def test_discovery_routes_are_declared_before_profile_route() -> None:
    paths = [route.path for route in router.routes]

    assert paths.index('/me/status') < paths.index('/{therapist_id}')
    assert paths.index('/instant-call/available') < paths.index('/{therapist_id}')


def test_list_therapists_puts_online_first_with_page_meta(directory_db) -> None:
    response = search_therapists(directory_db, limit=1)

    assert [therapist.id for therapist in response.data] == ['therapist-2']
    assert response.data[0].first_name == 'Nina'
    assert response.data[0].is_online is True
    assert response.meta.model_dump() == {'total': 2, 'page': 1, 'limit': 1, 'total_pages': 2}


def test_list_therapists_applies_filters(directory_db) -> None:
    by_name = search_therapists(directory_db, search='reed')
    by_rating = search_therapists(directory_db, min_rating=4.5)
    by_price = search_therapists(directory_db, max_price=10000)
    offline = search_therapists(directory_db, is_online=False)

    assert [therapist.id for therapist in by_name.data] == ['therapist-1']
    assert [therapist.id for therapist in by_rating.data] == ['therapist-1']
    assert [therapist.id for therapist in by_price.data] == ['therapist-2']
    assert [therapist.id for therapist in offline.data] == ['therapist-1']


def test_list_therapists_with_no_matches_is_empty(directory_db) -> None:
    response = search_therapists(directory_db, search='nobody')

    assert response.data == []
    assert response.meta.total == 0
    assert response.meta.total_pages == 0


def test_therapist_updates_own_online_status(directory_db) -> None:
    actor = Actor(id='therapist-user', role=ActorRole.THERAPIST)

    response = update_my_online_status(data=UpdateOnlineStatusRequest(is_online=True), actor=actor, db=directory_db)

    assert response.id == 'therapist-1'
    assert response.is_online is True
    assert get_therapist(therapist_id='therapist-1', db=directory_db).is_online is True


def test_patient_cannot_update_online_status(directory_db) -> None:
    actor = Actor(id='patient-user', role=ActorRole.PATIENT)

    with pytest.raises(HTTPException) as exception_info:
        update_my_online_status(data=UpdateOnlineStatusRequest(is_online=True), actor=actor, db=directory_db)

    assert exception_info.value.status_code == 403
    assert exception_info.value.detail == 'Only therapists can update their status.'


def test_instant_call_lists_only_online_therapists(directory_db) -> None:
    actor = Actor(id='patient-user', role=ActorRole.PATIENT)

    response = list_instant_call_therapists(limit=20, actor=actor, db=directory_db)

    assert [therapist.id for therapist in response] == ['therapist-2']
