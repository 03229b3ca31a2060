from unittest.mock import MagicMock

import pytest

from tutorspool.core.enums import ConflictScope, RejectionReason
from tutorspool.core.exceptions import (
    IllegalTransitionException,
    NotFoundException,
    ValidationException,
)
from tutorspool.models.booking import Booking, BookingStatus, SessionType
from tutorspool.services.booking_service import BookingService

from tests.factories.booking_data import (
    NOW,
    OTHER_STUDENT_ID,
    STUDENT_ID,
    SUBJECT_ID,
    TUTOR_ID,
    at,
)


@pytest.fixture
def payment_service():
    service = MagicMock()
    service.refund.return_value = "re_123"
    return service


@pytest.fixture
def booking_service(db, clock, payment_service) -> BookingService:
    return BookingService(
        db, clock=clock, payment_service=payment_service, conflict_scope=ConflictScope.PAIR
    )


def _request(service: BookingService, start, duration=60, student_id=STUDENT_ID, **kwargs):
    return service.request_booking(TUTOR_ID, student_id, SUBJECT_ID, start, duration, **kwargs)


class TestRequestBooking:
    def test_accepted_request_creates_pending_booking(self, db, booking_service, monday_block):
        result = _request(booking_service, at(10), price_cents=4500)

        assert result.accepted
        assert result.reason is None
        booking = db.get(Booking, result.booking.id)
        assert booking.status == BookingStatus.PENDING.value
        assert booking.start_at_utc == at(10)
        assert booking.end_at_utc == at(11)
        assert booking.price_cents == 4500
        assert booking.currency == "USD"
        assert booking.session_type == SessionType.ONLINE.value
        assert booking.created_at == NOW

    def test_rejected_request_creates_nothing(self, db, booking_service, monday_block, clock):
        clock.set(at(5))
        result = _request(booking_service, at(6))

        assert not result.accepted
        assert result.reason is RejectionReason.OUTSIDE_WORKING_HOURS
        assert result.message == "Requested time is outside tutor's working hours"
        assert db.query(Booking).count() == 0

    def test_conflict_with_confirmed_booking(self, booking_service, monday_block, make_booking):
        existing = make_booking(start=at(10))

        overlapping = _request(booking_service, at(10, 30))
        back_to_back = _request(booking_service, at(11))

        assert overlapping.reason is RejectionReason.CONFLICTING_BOOKING
        assert overlapping.details["conflicting_booking_id"] == existing.id
        assert back_to_back.accepted

    def test_pending_requests_do_not_block_each_other(self, booking_service, monday_block):
        first = _request(booking_service, at(10))
        second = _request(booking_service, at(10))
        assert first.accepted and second.accepted

    def test_offline_session_and_currency(self, booking_service, monday_block):
        result = _request(
            booking_service, at(10), session_type=SessionType.OFFLINE, currency="eur"
        )
        assert result.booking.session_type == SessionType.OFFLINE.value
        assert result.booking.currency == "EUR"

    def test_conflict_found_at_insert_becomes_rejection(
        self, booking_service, monday_block, make_booking, monkeypatch
    ):
        existing = make_booking(start=at(10))
        # Simulate the slot being taken between resolution and insert
        monkeypatch.setattr(
            booking_service.conflict_checker, "check_conflict", lambda *a, **k: None
        )

        result = _request(booking_service, at(10))

        assert result.reason is RejectionReason.CONFLICTING_BOOKING
        assert result.details["conflicting_booking_id"] == existing.id


class TestConfirmBooking:
    def test_confirm_pending(self, booking_service, make_booking):
        booking = make_booking(status=BookingStatus.PENDING)

        confirmed = booking_service.confirm_booking(booking.id)

        assert confirmed.status == BookingStatus.CONFIRMED.value
        assert confirmed.confirmed_at == NOW

    def test_confirm_rejects_when_slot_taken(self, db, booking_service, make_booking):
        make_booking(start=at(10), status=BookingStatus.CONFIRMED)
        pending = make_booking(start=at(10, 30), status=BookingStatus.PENDING)

        result = booking_service.confirm_booking(pending.id)

        assert result.status == BookingStatus.REJECTED.value
        assert result.status_reason == RejectionReason.CONFLICTING_BOOKING.value
        assert db.get(Booking, pending.id).status == BookingStatus.REJECTED.value

    def test_only_one_of_two_pending_requests_confirms(self, booking_service, monday_block):
        first = _request(booking_service, at(10)).booking
        second = _request(booking_service, at(10, 30)).booking

        assert booking_service.confirm_booking(first.id).status == BookingStatus.CONFIRMED.value
        assert booking_service.confirm_booking(second.id).status == BookingStatus.REJECTED.value

    def test_other_student_does_not_block_in_pair_scope(self, booking_service, make_booking):
        make_booking(start=at(10), student_id=OTHER_STUDENT_ID)
        pending = make_booking(start=at(10), status=BookingStatus.PENDING)
        assert booking_service.confirm_booking(pending.id).status == BookingStatus.CONFIRMED.value

    def test_confirm_non_pending_is_illegal(self, db, booking_service, make_booking):
        booking = make_booking(status=BookingStatus.CANCELLED)

        with pytest.raises(IllegalTransitionException):
            booking_service.confirm_booking(booking.id)

        db.expire_all()
        assert db.get(Booking, booking.id).status == BookingStatus.CANCELLED.value

    def test_confirm_unknown_booking(self, booking_service):
        with pytest.raises(NotFoundException):
            booking_service.confirm_booking("01HF4G12ABCDEF3456789XYZAB")


class TestLifecycleEdges:
    def test_reject_pending(self, booking_service, make_booking):
        booking = make_booking(status=BookingStatus.PENDING)
        rejected = booking_service.reject_booking(booking.id, "fully booked")
        assert rejected.status == BookingStatus.REJECTED.value
        assert rejected.status_reason == "fully booked"
        assert rejected.rejected_at == NOW

    @pytest.mark.parametrize("status", [BookingStatus.PENDING, BookingStatus.CONFIRMED])
    def test_cancel(self, booking_service, make_booking, status):
        booking = make_booking(status=status)
        cancelled = booking_service.cancel_booking(booking.id, "student request")
        assert cancelled.status == BookingStatus.CANCELLED.value
        assert cancelled.cancelled_at == NOW

    def test_cancel_paid_is_illegal(self, booking_service, make_booking):
        booking = make_booking(status=BookingStatus.PAID)
        with pytest.raises(IllegalTransitionException):
            booking_service.cancel_booking(booking.id)

    def test_complete_paid(self, booking_service, make_booking):
        booking = make_booking(status=BookingStatus.PAID)
        assert booking_service.complete_booking(booking.id).status == BookingStatus.COMPLETED.value

    def test_complete_confirmed_is_illegal(self, booking_service, make_booking):
        booking = make_booking(status=BookingStatus.CONFIRMED)
        with pytest.raises(IllegalTransitionException):
            booking_service.complete_booking(booking.id)


class TestRefundBooking:
    def test_refund_paid_booking_calls_gateway(self, booking_service, make_booking, payment_service):
        booking = make_booking(status=BookingStatus.PAID, payment_intent_id="pi_1")

        refunded = booking_service.refund_booking(booking.id, "session missed")

        assert refunded.status == BookingStatus.REFUNDED.value
        assert refunded.refunded_at == NOW
        payment_service.refund.assert_called_once()
        assert payment_service.refund.call_args.args[1] == "session missed"

    def test_refund_without_gateway(self, booking_service, make_booking, payment_service):
        booking = make_booking(status=BookingStatus.PAID)
        booking_service.refund_booking(booking.id, issue_gateway_refund=False)
        payment_service.refund.assert_not_called()

    def test_illegal_refund_never_reaches_gateway(
        self, booking_service, make_booking, payment_service
    ):
        booking = make_booking(status=BookingStatus.CONFIRMED)
        with pytest.raises(IllegalTransitionException):
            booking_service.refund_booking(booking.id)
        payment_service.refund.assert_not_called()


class TestCompleteFinishedSessions:
    def test_completes_only_ended_paid_sessions(self, db, booking_service, make_booking, clock):
        ended = make_booking(start=at(8, days=-1), status=BookingStatus.PAID)
        upcoming = make_booking(start=at(10), status=BookingStatus.PAID)
        confirmed = make_booking(start=at(6, days=-1), status=BookingStatus.CONFIRMED)

        completed = booking_service.complete_finished_sessions()

        assert completed == [ended.id]
        db.expire_all()
        assert db.get(Booking, ended.id).status == BookingStatus.COMPLETED.value
        assert db.get(Booking, upcoming.id).status == BookingStatus.PAID.value
        assert db.get(Booking, confirmed.id).status == BookingStatus.CONFIRMED.value


class TestReadPaths:
    def test_get_booking(self, booking_service, make_booking):
        booking = make_booking()
        assert booking_service.get_booking(booking.id).id == booking.id

    def test_get_unknown_booking(self, booking_service):
        with pytest.raises(NotFoundException):
            booking_service.get_booking("01HF4G12ABCDEF3456789XYZAB")

    def test_list_for_tutor_sorted_by_start(self, booking_service, make_booking):
        late = make_booking(start=at(14))
        early = make_booking(start=at(10), student_id=OTHER_STUDENT_ID)
        make_booking(start=at(12), tutor_id="tutor-other")

        bookings = booking_service.list_bookings(tutor_id=TUTOR_ID)

        assert [b.id for b in bookings] == [early.id, late.id]

    def test_list_for_student_with_status(self, booking_service, make_booking):
        pending = make_booking(start=at(10), status=BookingStatus.PENDING)
        make_booking(start=at(12), status=BookingStatus.CONFIRMED)
        make_booking(start=at(14), status=BookingStatus.PENDING, student_id=OTHER_STUDENT_ID)

        bookings = booking_service.list_bookings(
            student_id=STUDENT_ID, status=BookingStatus.PENDING
        )

        assert [b.id for b in bookings] == [pending.id]

    def test_list_upcoming_only(self, booking_service, make_booking, clock):
        make_booking(start=at(9))
        upcoming = make_booking(start=at(13))
        clock.set(at(11))

        bookings = booking_service.list_bookings(tutor_id=TUTOR_ID, upcoming_only=True)

        assert [b.id for b in bookings] == [upcoming.id]

    @pytest.mark.parametrize(
        "filters", [{}, {"tutor_id": TUTOR_ID, "student_id": STUDENT_ID}]
    )
    def test_list_needs_exactly_one_participant(self, booking_service, filters):
        with pytest.raises(ValidationException):
            booking_service.list_bookings(**filters)
