from unittest.mock import patch

from kombu.exceptions import OperationalError
import pytest

from tutorspool.core.enums import ReconciliationOutcome
from tutorspool.core.exceptions import (
    BookingNotFoundException,
    MissingBookingReferenceException,
    ServiceException,
)
from tutorspool.integrations.meeting_client import MeetingProviderError
from tutorspool.models.booking import Booking, BookingStatus, SessionType
from tutorspool.models.webhook_event import WebhookEvent, WebhookEventStatus
from tutorspool.schemas.payment_event import PaymentEvent
from tutorspool.services.booking_service import BookingService
from tutorspool.services.meeting_provisioner import MeetingProvisioner
from tutorspool.services.payment_reconciler import PaymentWebhookReconciler

from tests.factories.booking_data import NOW, STUDENT_ID, SUBJECT_ID, TUTOR_ID, at, stripe_event


def _event(booking_id, event_type="payment_intent.succeeded", **kwargs) -> PaymentEvent:
    event = PaymentEvent.from_stripe_event(stripe_event(event_type, booking_id=booking_id, **kwargs))
    assert event is not None
    return event


@pytest.fixture
def reconciler(db, clock, meeting_client) -> PaymentWebhookReconciler:
    return PaymentWebhookReconciler(
        db,
        clock=clock,
        meeting_provisioner=MeetingProvisioner(db, client=meeting_client),
        provisioning_mode="inline",
    )


def _ledger_rows(db):
    return db.query(WebhookEvent).all()


class TestSucceededEvents:
    def test_paid_online_booking_gets_meeting_link(self, db, reconciler, make_booking, meeting_client):
        booking = make_booking(status=BookingStatus.CONFIRMED)

        result = reconciler.reconcile(_event(booking.id))

        assert result.outcome == ReconciliationOutcome.PAID_MEETING_CREATED
        db.expire_all()
        stored = db.get(Booking, booking.id)
        assert stored.status == BookingStatus.PAID.value
        assert stored.paid_at == NOW
        assert stored.payment_intent_id == "pi_1"
        assert stored.meeting_link == result.meeting_link
        assert stored.meeting_link.startswith("https://meet.example.com/")
        assert stored.meeting_passcode
        assert stored.meeting_link_error is None

        call = meeting_client.calls[0]
        assert call["title"] == f"Tutoring Session - {TUTOR_ID}"
        assert call["duration_minutes"] == 60
        assert call["idempotency_key"] == booking.id

    def test_duplicate_delivery_is_idempotent(self, db, reconciler, make_booking, meeting_client):
        booking = make_booking(status=BookingStatus.CONFIRMED)
        event = _event(booking.id)

        first = reconciler.reconcile(event)
        second = reconciler.reconcile(event)

        assert first.outcome == ReconciliationOutcome.PAID_MEETING_CREATED
        assert second.outcome == ReconciliationOutcome.ALREADY_PROCESSED
        assert len(meeting_client.calls) == 1
        rows = _ledger_rows(db)
        assert len(rows) == 1
        assert rows[0].retry_count == 1
        assert rows[0].status == WebhookEventStatus.PROCESSED

    def test_second_event_for_same_intent_is_idempotent(
        self, db, reconciler, make_booking, meeting_client
    ):
        booking = make_booking(status=BookingStatus.CONFIRMED)

        reconciler.reconcile(_event(booking.id, event_id="evt_1"))
        link = db.get(Booking, booking.id).meeting_link
        again = reconciler.reconcile(_event(booking.id, event_id="evt_2"))

        assert again.outcome == ReconciliationOutcome.ALREADY_PROCESSED
        assert len(meeting_client.calls) == 1
        db.expire_all()
        stored = db.get(Booking, booking.id)
        assert stored.status == BookingStatus.PAID.value
        assert stored.meeting_link == link
        assert len(_ledger_rows(db)) == 2

    def test_meeting_failure_does_not_fail_payment(self, db, reconciler, make_booking, meeting_client):
        meeting_client.set_error(MeetingProviderError("provider down", status_code=503))
        booking = make_booking(status=BookingStatus.CONFIRMED)

        result = reconciler.reconcile(_event(booking.id))

        assert result.outcome == ReconciliationOutcome.PAID_MEETING_FAILED
        assert result.meeting_error == "provider down"
        db.expire_all()
        stored = db.get(Booking, booking.id)
        assert stored.status == BookingStatus.PAID.value
        assert stored.meeting_link is None
        assert stored.meeting_link_error == "provider down"
        assert _ledger_rows(db)[0].status == WebhookEventStatus.PROCESSED

    def test_offline_session_never_provisions(self, reconciler, make_booking, meeting_client):
        booking = make_booking(status=BookingStatus.CONFIRMED, session_type=SessionType.OFFLINE)

        result = reconciler.reconcile(_event(booking.id))

        assert result.outcome == ReconciliationOutcome.PAID_NO_MEETING_NEEDED
        assert result.booking_status == BookingStatus.PAID.value
        assert meeting_client.calls == []

    def test_stale_event_for_cancelled_booking_is_ignored(
        self, db, reconciler, make_booking, meeting_client
    ):
        booking = make_booking(status=BookingStatus.CANCELLED)

        result = reconciler.reconcile(_event(booking.id))

        assert result.outcome == ReconciliationOutcome.IGNORED_STALE_EVENT
        db.expire_all()
        assert db.get(Booking, booking.id).status == BookingStatus.CANCELLED.value
        assert meeting_client.calls == []
        assert _ledger_rows(db)[0].status == WebhookEventStatus.PROCESSED

    def test_amount_mismatch_still_pays(self, db, reconciler, make_booking, caplog):
        booking = make_booking(status=BookingStatus.CONFIRMED, price_cents=5000)

        with caplog.at_level("WARNING"):
            result = reconciler.reconcile(_event(booking.id, amount=4000))

        assert result.outcome == ReconciliationOutcome.PAID_MEETING_CREATED
        assert "amount mismatch" in caplog.text

    def test_legacy_metadata_key(self, reconciler, make_booking):
        booking = make_booking(status=BookingStatus.CONFIRMED)
        result = reconciler.reconcile(_event(booking.id, metadata_key="bookingId"))
        assert result.booking_id == booking.id

    def test_queued_mode_hands_off_to_worker(self, db, clock, make_booking, meeting_client):
        reconciler = PaymentWebhookReconciler(
            db,
            clock=clock,
            meeting_provisioner=MeetingProvisioner(db, client=meeting_client),
            provisioning_mode="queued",
        )
        booking = make_booking(status=BookingStatus.CONFIRMED)

        with patch("tutorspool.tasks.meeting_tasks.enqueue_meeting_provisioning") as enqueue:
            result = reconciler.reconcile(_event(booking.id))

        assert result.outcome == ReconciliationOutcome.PAID_MEETING_QUEUED
        enqueue.assert_called_once_with(booking.id)
        assert meeting_client.calls == []
        assert db.get(Booking, booking.id).status == BookingStatus.PAID.value

    def test_broker_outage_does_not_fail_payment(self, db, clock, make_booking, meeting_client):
        reconciler = PaymentWebhookReconciler(
            db,
            clock=clock,
            meeting_provisioner=MeetingProvisioner(db, client=meeting_client),
            provisioning_mode="queued",
        )
        booking = make_booking(status=BookingStatus.CONFIRMED)

        with patch(
            "tutorspool.tasks.meeting_tasks.enqueue_meeting_provisioning",
            side_effect=OperationalError("broker down"),
        ):
            result = reconciler.reconcile(_event(booking.id))

        assert result.outcome == ReconciliationOutcome.PAID_MEETING_FAILED
        assert result.meeting_error == "broker down"
        db.expire_all()
        stored = db.get(Booking, booking.id)
        assert stored.status == BookingStatus.PAID.value
        assert stored.meeting_link_error == "broker down"
        ledger = _ledger_rows(db)
        assert [row.status for row in ledger] == [WebhookEventStatus.PROCESSED]

    def test_inline_provisioning_crash_does_not_fail_payment(self, db, reconciler, make_booking):
        booking = make_booking(status=BookingStatus.CONFIRMED)

        with patch.object(
            MeetingProvisioner,
            "provision_for_booking",
            side_effect=ServiceException("Database operation failed: lock timeout"),
        ):
            result = reconciler.reconcile(_event(booking.id))

        assert result.outcome == ReconciliationOutcome.PAID_MEETING_FAILED
        db.expire_all()
        stored = db.get(Booking, booking.id)
        assert stored.status == BookingStatus.PAID.value
        assert stored.meeting_link_error == "Database operation failed: lock timeout"


class TestFailedEvents:
    def test_failed_payment_is_recorded(self, db, reconciler, make_booking, meeting_client):
        booking = make_booking(status=BookingStatus.CONFIRMED)

        result = reconciler.reconcile(
            _event(booking.id, "payment_intent.payment_failed", failure_message="card declined")
        )

        assert result.outcome == ReconciliationOutcome.PAYMENT_FAILED_RECORDED
        db.expire_all()
        stored = db.get(Booking, booking.id)
        assert stored.status == BookingStatus.FAILED.value
        assert stored.failed_at == NOW
        assert meeting_client.calls == []

    def test_failure_after_payment_is_stale(self, db, reconciler, make_booking):
        booking = make_booking(status=BookingStatus.PAID)
        result = reconciler.reconcile(_event(booking.id, "payment_intent.payment_failed"))
        assert result.outcome == ReconciliationOutcome.IGNORED_STALE_EVENT
        assert db.get(Booking, booking.id).status == BookingStatus.PAID.value


class TestReconciliationErrors:
    def test_missing_booking_reference_raises(self, db, reconciler):
        with pytest.raises(MissingBookingReferenceException):
            reconciler.reconcile(_event(None))

        row = _ledger_rows(db)[0]
        assert row.status == WebhookEventStatus.FAILED
        assert row.processing_error == "Payment event has no booking reference"

    def test_unknown_booking_raises(self, db, reconciler):
        with pytest.raises(BookingNotFoundException):
            reconciler.reconcile(_event("01HF4G12ABCDEF3456789XYZAB"))
        assert _ledger_rows(db)[0].status == WebhookEventStatus.FAILED

    def test_failed_event_is_retried_on_redelivery(self, db, reconciler, make_booking):
        with pytest.raises(BookingNotFoundException):
            reconciler.reconcile(_event("01HF4G12ABCDEF3456789XYZAB", event_id="evt_9"))

        booking = make_booking(status=BookingStatus.CONFIRMED, id="01HF4G12ABCDEF3456789XYZAB")
        result = reconciler.reconcile(_event(booking.id, event_id="evt_9"))

        assert result.outcome == ReconciliationOutcome.PAID_MEETING_CREATED
        row = _ledger_rows(db)[0]
        assert row.status == WebhookEventStatus.PROCESSED
        assert row.retry_count == 1


def test_booking_lifecycle_end_to_end(db, clock, meeting_client, monday_block):
    """Request, confirm, pay; the paid session ends up with a join link."""
    booking_service = BookingService(db, clock=clock)
    reconciler = PaymentWebhookReconciler(
        db,
        clock=clock,
        meeting_provisioner=MeetingProvisioner(db, client=meeting_client),
        provisioning_mode="inline",
    )

    requested = booking_service.request_booking(TUTOR_ID, STUDENT_ID, SUBJECT_ID, at(10), 60)
    assert requested.accepted
    assert requested.booking.status == BookingStatus.PENDING.value

    confirmed = booking_service.confirm_booking(requested.booking.id)
    assert confirmed.status == BookingStatus.CONFIRMED.value

    result = reconciler.reconcile(_event(confirmed.id, intent_id="pi_scenario"))

    assert result.outcome == ReconciliationOutcome.PAID_MEETING_CREATED
    db.expire_all()
    paid = db.get(Booking, confirmed.id)
    assert paid.status == BookingStatus.PAID.value
    assert paid.payment_intent_id == "pi_scenario"
    assert paid.meeting_link == result.meeting_link
