# backend/tutorspool/services/payment_reconciler.py
"""
Payment Webhook Reconciler for the TutorsPool booking core.

Applies payment gateway events to bookings under at-least-once delivery:

- every event is recorded in the webhook ledger first; an event already
  processed is acknowledged without side effects
- the booking row is locked while its status changes, so duplicate
  deliveries racing each other serialize
- a booking already in the state the event asks for is acknowledged
  as ALREADY_PROCESSED
- an event that no longer fits the lifecycle (e.g. SUCCEEDED for a
  cancelled booking) is acknowledged as IGNORED_STALE_EVENT

The payment transition is committed before any meeting provisioning, and
provisioning failures never turn a successful payment into a failure.
Missing or unknown booking references are raised to the caller so the
gateway redelivers and an operator is alerted.
"""

import logging
from typing import Optional, Tuple, Union

from sqlalchemy.orm import Session

from ..core.clock import Clock, system_clock
from ..core.config import settings
from ..core.enums import PaymentEventType, ReconciliationOutcome
from ..core.exceptions import (
    BookingNotFoundException,
    IllegalTransitionException,
    MissingBookingReferenceException,
    ReconciliationError,
)
from ..models.booking import Booking, BookingStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from ..repositories.booking_repository import BookingRepository
from ..schemas.payment_event import PaymentEvent, ReconciliationResult
from .base import BaseService
from .booking_state_machine import BookingStateMachine
from .meeting_provisioner import MeetingProvisioner
from .webhook_ledger_service import WebhookLedgerService

logger = logging.getLogger(__name__)

WEBHOOK_SOURCE = "stripe"

# Status the event drives the booking to
EVENT_TARGETS = {
    PaymentEventType.SUCCEEDED: BookingStatus.PAID,
    PaymentEventType.FAILED: BookingStatus.FAILED,
}

LEDGER_EVENT_TYPES = {
    PaymentEventType.SUCCEEDED: "payment_intent.succeeded",
    PaymentEventType.FAILED: "payment_intent.payment_failed",
}


class PaymentWebhookReconciler(BaseService):
    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        meeting_provisioner: Optional[MeetingProvisioner] = None,
        booking_repository: Optional[BookingRepository] = None,
        ledger: Optional[WebhookLedgerService] = None,
        state_machine: Optional[BookingStateMachine] = None,
        provisioning_mode: Optional[str] = None,
    ):
        super().__init__(db)
        self.clock = clock or system_clock
        self.booking_repository = booking_repository or RepositoryFactory.create_booking_repository(db)
        self.meeting_provisioner = meeting_provisioner or MeetingProvisioner(
            db, repository=self.booking_repository
        )
        self.ledger = ledger or WebhookLedgerService(db, clock=self.clock)
        self.state_machine = state_machine or BookingStateMachine(self.clock)
        self.provisioning_mode = provisioning_mode or settings.meeting_provisioning_mode

    @BaseService.measure_operation("reconcile_payment_event")
    def reconcile(self, event: PaymentEvent) -> ReconciliationResult:
        """
        Apply one gateway event to its booking.

        Raises:
            MissingBookingReferenceException: Event metadata has no booking id
            BookingNotFoundException: Referenced booking does not exist
        """
        with self.transaction():
            ledger_event = self.ledger.log_received(
                source=WEBHOOK_SOURCE,
                event_type=LEDGER_EVENT_TYPES[event.type],
                payload=event.model_dump(mode="json"),
                event_id=event.gateway_event_id,
            )

        if self.ledger.is_processed(ledger_event):
            self.logger.info(f"Gateway event {event.gateway_event_id} already processed")
            return self._finish(
                event,
                ReconciliationResult(
                    outcome=ReconciliationOutcome.ALREADY_PROCESSED,
                    booking_id=ledger_event.related_entity_id or event.booking_id,
                    gateway_event_id=event.gateway_event_id,
                    message="Event already processed",
                ),
            )

        try:
            with self.transaction():
                self.ledger.mark_processing(ledger_event)
                result, booking = self._apply(event)
                self.ledger.mark_processed(ledger_event, related_entity_id=result.booking_id)
        except ReconciliationError as exc:
            self.logger.error(
                f"Payment reconciliation failed for event {event.gateway_event_id}: {exc.message}",
                extra={"code": exc.code, **exc.details},
            )
            with self.transaction():
                self.ledger.mark_failed(ledger_event, error=exc.message, related_entity_id=event.booking_id)
            prometheus_metrics.inc_reconciliation(event.type.value, exc.code)
            raise

        if booking is not None:
            result = self._provision_meeting(booking, event)

        return self._finish(event, result)

    def _finish(self, event: PaymentEvent, result: ReconciliationResult) -> ReconciliationResult:
        prometheus_metrics.inc_reconciliation(event.type.value, str(result.outcome))
        return result

    def _load_booking(self, event: PaymentEvent) -> Booking:
        if not event.booking_id:
            raise MissingBookingReferenceException(event.gateway_event_id, event.payment_intent_id)
        booking = self.booking_repository.get_by_id_for_update(event.booking_id)
        if booking is None:
            raise BookingNotFoundException(event.booking_id, event.gateway_event_id)
        return booking

    def _apply(self, event: PaymentEvent) -> Tuple[ReconciliationResult, Optional[Booking]]:
        """
        Drive the status change inside the caller's transaction.

        Returns the result and, for a fresh PAID transition, the booking so
        provisioning can run after commit.
        """
        booking = self._load_booking(event)
        target = EVENT_TARGETS[event.type]

        if booking.status == target.value:
            self.logger.info(
                f"Booking {booking.id} already {target.value}; ignoring event {event.gateway_event_id}"
            )
            return self._result(ReconciliationOutcome.ALREADY_PROCESSED, event, booking), None

        self._check_amount(event, booking)

        try:
            transition = self.state_machine.transition(booking, target)
        except IllegalTransitionException as exc:
            self.logger.warning(
                f"Stale payment event {event.gateway_event_id} for booking {booking.id}: "
                f"{exc.from_status} -> {exc.to_status} is not allowed"
            )
            return self._result(ReconciliationOutcome.IGNORED_STALE_EVENT, event, booking), None

        booking.payment_intent_id = event.payment_intent_id
        self.booking_repository.flush()

        if event.type == PaymentEventType.FAILED:
            return self._result(ReconciliationOutcome.PAYMENT_FAILED_RECORDED, event, booking), None

        outcome = ReconciliationOutcome.PAID_NO_MEETING_NEEDED
        return self._result(outcome, event, booking), booking if transition.provision_meeting else None

    def _provision_meeting(self, booking: Booking, event: PaymentEvent) -> ReconciliationResult:
        """Provision after the payment commit. Failures here never fail the event."""
        booking_id = booking.id
        try:
            return self._dispatch_provisioning(booking_id, event)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            self.logger.error(
                f"Meeting provisioning could not run for booking {booking_id}: {error}",
                extra={"booking_id": booking_id, "gateway_event_id": event.gateway_event_id},
            )
            self._record_provisioning_error(booking_id, error)
            return ReconciliationResult(
                outcome=ReconciliationOutcome.PAID_MEETING_FAILED,
                booking_id=booking_id,
                gateway_event_id=event.gateway_event_id,
                booking_status=BookingStatus.PAID.value,
                meeting_error=error,
                message="Payment processed; meeting link creation failed",
            )

    def _record_provisioning_error(self, booking_id: str, error: str) -> None:
        try:
            with self.transaction():
                locked = self.booking_repository.get_by_id_for_update(booking_id)
                if locked is not None and locked.needs_meeting_link:
                    locked.meeting_link_error = error
        except Exception:
            self.logger.exception(f"Could not record meeting link error for booking {booking_id}")

    def _dispatch_provisioning(self, booking_id: str, event: PaymentEvent) -> ReconciliationResult:
        if self.provisioning_mode == "queued":
            from ..tasks.meeting_tasks import enqueue_meeting_provisioning

            enqueue_meeting_provisioning(booking_id)
            self.logger.info(f"Queued meeting provisioning for booking {booking_id}")
            return ReconciliationResult(
                outcome=ReconciliationOutcome.PAID_MEETING_QUEUED,
                booking_id=booking_id,
                gateway_event_id=event.gateway_event_id,
                booking_status=BookingStatus.PAID.value,
                message="Payment processed; meeting link will be created shortly",
            )

        provisioned = self.meeting_provisioner.provision_for_booking(booking_id)
        if provisioned.created:
            return ReconciliationResult(
                outcome=ReconciliationOutcome.PAID_MEETING_CREATED,
                booking_id=booking_id,
                gateway_event_id=event.gateway_event_id,
                booking_status=BookingStatus.PAID.value,
                meeting_link=provisioned.join_url,
                message="Payment processed and meeting link created",
            )
        return ReconciliationResult(
            outcome=ReconciliationOutcome.PAID_MEETING_FAILED,
            booking_id=booking_id,
            gateway_event_id=event.gateway_event_id,
            booking_status=BookingStatus.PAID.value,
            meeting_error=provisioned.error,
            message="Payment processed; meeting link creation failed",
        )

    def _check_amount(self, event: PaymentEvent, booking: Booking) -> None:
        if event.type != PaymentEventType.SUCCEEDED or not booking.price_cents:
            return
        currency_matches = (booking.currency or "").upper() == event.currency
        if event.amount_cents != booking.price_cents or not currency_matches:
            self.logger.warning(
                f"Payment amount mismatch for booking {booking.id}: "
                f"expected {booking.price_cents} {booking.currency}, "
                f"got {event.amount_cents} {event.currency}"
            )

    @staticmethod
    def _result(
        outcome: Union[ReconciliationOutcome, str], event: PaymentEvent, booking: Booking
    ) -> ReconciliationResult:
        return ReconciliationResult(
            outcome=outcome,
            booking_id=booking.id,
            gateway_event_id=event.gateway_event_id,
            booking_status=booking.status,
            meeting_link=booking.meeting_link,
        )
