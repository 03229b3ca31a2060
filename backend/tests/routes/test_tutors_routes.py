from datetime import time

from tutorspool.models.booking import BookingStatus

from tests.factories.booking_data import OTHER_STUDENT_ID, TUTOR_ID, at

SLOTS_URL = f"/api/v1/tutors/{TUTOR_ID}/available-slots"


def test_available_slots(client, add_block, make_booking):
    add_block(start=time(9, 0), end=time(12, 0))
    make_booking(start=at(10), status=BookingStatus.PENDING, student_id=OTHER_STUDENT_ID)

    response = client.get(SLOTS_URL, params={"date": "2026-10-19", "duration_minutes": 60})

    assert response.status_code == 200
    body = response.json()
    assert body["tutor_id"] == TUTOR_ID
    assert body["day"] == "2026-10-19"
    assert body["duration_minutes"] == 60
    assert len(body["slots"]) == 2
    assert body["slots"][0].startswith("2026-10-19T09:00:00")
    assert body["slots"][1].startswith("2026-10-19T11:00:00")


def test_tutor_without_blocks_has_no_slots(client):
    response = client.get(SLOTS_URL, params={"date": "2026-10-19"})
    assert response.status_code == 200
    assert response.json()["slots"] == []


def test_date_is_required(client):
    assert client.get(SLOTS_URL).status_code == 422


def test_too_short_duration_is_422(client):
    response = client.get(SLOTS_URL, params={"date": "2026-10-19", "duration_minutes": 5})
    assert response.status_code == 422
