# backend/tutorspool/services/meeting_provisioner.py
"""
Meeting link provisioning for paid online sessions.

Provider failures are soft: they are recorded on the booking as
``meeting_link_error`` and never undo or fail the payment transition that
triggered provisioning. The provider call happens outside any open
transaction so no booking row lock is held while waiting on the network.
"""

from dataclasses import dataclass
import logging
import time
from typing import Optional, Union

from sqlalchemy.orm import Session

from ..core.exceptions import NotFoundException
from ..integrations.meeting_client import (
    FakeMeetingClient,
    MeetingClient,
    MeetingProviderClient,
    MeetingProviderError,
    build_meeting_client,
)
from ..models.booking import Booking, BookingStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from ..repositories.booking_repository import BookingRepository
from .base import BaseService

logger = logging.getLogger(__name__)

MEETING_TITLE_PREFIX = "Tutoring Session"


@dataclass(frozen=True)
class ProvisioningResult:
    join_url: Optional[str] = None
    passcode: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False

    @property
    def created(self) -> bool:
        return bool(self.join_url)


def meeting_title(booking: Booking) -> str:
    return f"{MEETING_TITLE_PREFIX} - {booking.tutor_id}"


class MeetingProvisioner(BaseService):
    def __init__(
        self,
        db: Session,
        client: Union[MeetingClient, MeetingProviderClient, FakeMeetingClient, None] = None,
        repository: Optional[BookingRepository] = None,
    ):
        super().__init__(db)
        self._client = client
        self.repository = repository or RepositoryFactory.create_booking_repository(db)

    @property
    def client(self) -> Union[MeetingClient, MeetingProviderClient, FakeMeetingClient]:
        """Built on first use so a misconfigured provider fails the call, not the wiring."""
        if self._client is None:
            self._client = build_meeting_client()
        return self._client

    def create_meeting(self, booking: Booking) -> ProvisioningResult:
        """
        Call the provider for ``booking``. Never raises.

        Any exception from the client is captured as the result's ``error``.
        """
        started = time.monotonic()
        try:
            meeting = self.client.create_meeting(
                title=meeting_title(booking),
                start_time=booking.start_at_utc,
                duration_minutes=booking.duration_minutes,
                idempotency_key=booking.id,
            )
        except Exception as exc:
            prometheus_metrics.record_meeting_provisioning("error", time.monotonic() - started)
            error = str(exc) or type(exc).__name__
            self.logger.error(
                "Meeting provisioning failed for booking %s: %s",
                booking.id,
                error,
                extra={
                    "booking_id": booking.id,
                    "status_code": getattr(exc, "status_code", None),
                },
            )
            return ProvisioningResult(error=error)

        prometheus_metrics.record_meeting_provisioning("success", time.monotonic() - started)
        return ProvisioningResult(join_url=meeting["join_url"], passcode=meeting.get("passcode"))

    @BaseService.measure_operation("provision_for_booking")
    def provision_for_booking(
        self, booking_id: str, *, raise_on_error: bool = False
    ) -> ProvisioningResult:
        """
        Provision a meeting for a PAID online booking and persist the outcome.

        The result is written in its own transaction, separate from the
        payment transition. A booking that is no longer waiting for a link
        is skipped.

        Raises:
            NotFoundException: If the booking does not exist
            MeetingProviderError: Only when ``raise_on_error`` is set and the
                provider failed; the error is recorded first
        """
        booking = self.repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        if not booking.needs_meeting_link:
            self.logger.info(f"Booking {booking_id} does not need a meeting link; skipping")
            return ProvisioningResult(join_url=booking.meeting_link, skipped=True)

        # Release any read snapshot before the network call
        self.db.commit()
        result = self.create_meeting(booking)

        with self.transaction():
            locked = self.repository.get_by_id_for_update(booking_id)
            if locked is None:
                raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
            if locked.status != BookingStatus.PAID.value:
                # Refunded or completed while the provider call was in flight
                self.logger.warning(
                    f"Booking {booking_id} moved to {locked.status} during provisioning; not storing result"
                )
                return ProvisioningResult(join_url=locked.meeting_link, skipped=True)
            if result.created:
                if locked.meeting_link:
                    # A concurrent attempt already stored a link; keep it
                    result = ProvisioningResult(join_url=locked.meeting_link, skipped=True)
                else:
                    locked.meeting_link = result.join_url
                    locked.meeting_passcode = result.passcode
                    locked.meeting_link_error = None
            elif not locked.meeting_link:
                locked.meeting_link_error = result.error

        if result.created and not result.skipped:
            self.logger.info(f"Meeting link stored for booking {booking_id}")
        if result.error and raise_on_error:
            raise MeetingProviderError(result.error)
        return result

    def retry_for_booking(self, booking_id: str) -> ProvisioningResult:
        """Re-provision a PAID online booking that still has no link."""
        return self.provision_for_booking(booking_id)
