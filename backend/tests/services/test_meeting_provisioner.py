import pytest

from tutorspool.core.config import settings
from tutorspool.core.exceptions import NotFoundException
from tutorspool.integrations.meeting_client import FakeMeetingClient, MeetingProviderError
from tutorspool.models.booking import Booking, BookingStatus, SessionType
from tutorspool.services.meeting_provisioner import MeetingProvisioner, meeting_title

from tests.factories.booking_data import TUTOR_ID


@pytest.fixture
def provisioner(db, meeting_client) -> MeetingProvisioner:
    return MeetingProvisioner(db, client=meeting_client)


def test_meeting_title_names_tutor(make_booking):
    booking = make_booking()
    assert meeting_title(booking) == f"Tutoring Session - {TUTOR_ID}"


def test_create_meeting_never_raises(provisioner, meeting_client, make_booking):
    meeting_client.set_error(MeetingProviderError("timeout"))
    result = provisioner.create_meeting(make_booking(status=BookingStatus.PAID))
    assert not result.created
    assert result.error == "timeout"


def test_create_meeting_captures_unexpected_errors(db, make_booking):
    class BrokenClient:
        def create_meeting(self, **kwargs):
            raise KeyError("join_url")

    result = MeetingProvisioner(db, client=BrokenClient()).create_meeting(
        make_booking(status=BookingStatus.PAID)
    )
    assert result.error


def test_provision_stores_link(db, provisioner, make_booking):
    booking = make_booking(status=BookingStatus.PAID)

    result = provisioner.provision_for_booking(booking.id)

    assert result.created and not result.skipped
    db.expire_all()
    stored = db.get(Booking, booking.id)
    assert stored.meeting_link == result.join_url
    assert stored.meeting_passcode == result.passcode


@pytest.mark.parametrize(
    "status,session_type,link",
    [
        (BookingStatus.CONFIRMED, SessionType.ONLINE, None),
        (BookingStatus.PAID, SessionType.OFFLINE, None),
        (BookingStatus.PAID, SessionType.ONLINE, "https://meet.example.com/abc-defg-hij"),
    ],
)
def test_provision_skips_bookings_not_waiting_for_link(
    provisioner, meeting_client, make_booking, status, session_type, link
):
    booking = make_booking(status=status, session_type=session_type, meeting_link=link)

    result = provisioner.provision_for_booking(booking.id)

    assert result.skipped
    assert meeting_client.calls == []


def test_provision_failure_is_recorded(db, provisioner, meeting_client, make_booking):
    meeting_client.set_error(MeetingProviderError("quota exceeded", status_code=429))
    booking = make_booking(status=BookingStatus.PAID)

    result = provisioner.provision_for_booking(booking.id)

    assert result.error == "quota exceeded"
    db.expire_all()
    stored = db.get(Booking, booking.id)
    assert stored.status == BookingStatus.PAID.value
    assert stored.meeting_link is None
    assert stored.meeting_link_error == "quota exceeded"


def test_provision_failure_can_raise_after_recording(db, provisioner, meeting_client, make_booking):
    meeting_client.set_error(MeetingProviderError("quota exceeded"))
    booking = make_booking(status=BookingStatus.PAID)

    with pytest.raises(MeetingProviderError):
        provisioner.provision_for_booking(booking.id, raise_on_error=True)

    db.expire_all()
    assert db.get(Booking, booking.id).meeting_link_error == "quota exceeded"


def test_retry_clears_previous_error(db, provisioner, meeting_client, make_booking):
    booking = make_booking(status=BookingStatus.PAID, meeting_link_error="quota exceeded")

    result = provisioner.retry_for_booking(booking.id)

    assert result.created
    db.expire_all()
    stored = db.get(Booking, booking.id)
    assert stored.meeting_link == result.join_url
    assert stored.meeting_link_error is None


def test_provision_unknown_booking(provisioner):
    with pytest.raises(NotFoundException):
        provisioner.provision_for_booking("01HF4G12ABCDEF3456789XYZAB")


@pytest.mark.parametrize("final_status", [BookingStatus.REFUNDED, BookingStatus.COMPLETED])
def test_provision_leaves_booking_closed_mid_call_untouched(db, make_booking, final_status):
    booking = make_booking(status=BookingStatus.PAID)
    inner = FakeMeetingClient()

    class ClosingClient:
        def create_meeting(self, **kwargs):
            db.get(Booking, booking.id).status = final_status.value
            db.commit()
            return inner.create_meeting(**kwargs)

    result = MeetingProvisioner(db, client=ClosingClient()).provision_for_booking(booking.id)

    assert result.skipped
    db.expire_all()
    stored = db.get(Booking, booking.id)
    assert stored.status == final_status.value
    assert stored.meeting_link is None
    assert stored.meeting_passcode is None
    assert stored.meeting_link_error is None


def test_misconfigured_provider_is_a_soft_failure(db, make_booking, monkeypatch):
    monkeypatch.setattr(settings, "meeting_provider_enabled", True)
    monkeypatch.setattr(settings, "meeting_provider_access_key", "")
    booking = make_booking(status=BookingStatus.PAID)

    result = MeetingProvisioner(db).provision_for_booking(booking.id)

    assert result.error == "Meeting provider is enabled but not configured"
    db.expire_all()
    assert db.get(Booking, booking.id).meeting_link_error == result.error
