import logging

from tutorspool.models.booking import Booking, BookingStatus, SessionType

from tests.factories.booking_data import STUDENT_ID, SUBJECT_ID, TUTOR_ID, at


def _booking(**kwargs) -> Booking:
    return Booking(
        student_id=STUDENT_ID,
        tutor_id=TUTOR_ID,
        subject_id=SUBJECT_ID,
        start_at_utc=at(10),
        end_at_utc=at(11),
        session_type=SessionType.ONLINE.value,
        **kwargs,
    )


def test_new_booking_defaults_to_pending():
    assert _booking().status == BookingStatus.PENDING.value


def test_construction_logs_below_info(caplog):
    with caplog.at_level(logging.DEBUG, logger="tutorspool.models.booking"):
        _booking()

    records = [r for r in caplog.records if r.name == "tutorspool.models.booking"]
    assert records
    assert all(r.levelno == logging.DEBUG for r in records)


def test_needs_meeting_link_only_for_paid_online_without_link():
    assert _booking(status=BookingStatus.PAID.value).needs_meeting_link
    assert not _booking(status=BookingStatus.CONFIRMED.value).needs_meeting_link
    assert not _booking(
        status=BookingStatus.PAID.value, meeting_link="https://meet.example.com/abc"
    ).needs_meeting_link
