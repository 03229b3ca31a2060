# backend/tutorspool/services/booking_service.py
"""
Booking Service for the TutorsPool booking core.

Application facade over the booking lifecycle:

- request_booking: resolve availability and create a PENDING booking
- confirm_booking: re-check conflicts and confirm, or reject on conflict
- reject/cancel/complete/refund: the remaining lifecycle edges
- get_booking, list_bookings, available_slots: read paths

Business rejections come back as BookingRequestResult values; lifecycle
violations raise IllegalTransitionException.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from ..core.clock import Clock, ensure_utc, system_clock
from ..core.config import settings
from ..core.enums import REJECTION_MESSAGES, ConflictScope, RejectionReason
from ..core.exceptions import BookingConflictException, NotFoundException, ValidationException
from ..models.booking import Booking, BookingStatus, SessionType
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from ..repositories.booking_repository import BookingRepository
from .availability_resolver import AvailabilityDecision, AvailabilityResolver
from .base import BaseService
from .booking_state_machine import BookingStateMachine, next_status
from .conflict_checker import ConflictChecker, resolve_scope
from .payment_intent_service import PaymentIntentService

logger = logging.getLogger(__name__)


@dataclass
class BookingRequestResult:
    """Either the created booking or the reason the slot was refused."""

    booking: Optional[Booking] = None
    reason: Optional[RejectionReason] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return self.booking is not None

    @property
    def message(self) -> Optional[str]:
        return REJECTION_MESSAGES[self.reason] if self.reason else None

    @classmethod
    def rejected(cls, decision: AvailabilityDecision) -> "BookingRequestResult":
        return cls(reason=decision.reason, details=dict(decision.details))


class BookingService(BaseService):
    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        repository: Optional[BookingRepository] = None,
        resolver: Optional[AvailabilityResolver] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        payment_service: Optional[PaymentIntentService] = None,
        conflict_scope: Union[ConflictScope, str, None] = None,
    ):
        super().__init__(db)
        self.clock = clock or system_clock
        self.repository = repository or RepositoryFactory.create_booking_repository(db)
        self.conflict_scope = resolve_scope(conflict_scope)
        self.conflict_checker = conflict_checker or ConflictChecker(
            db, repository=self.repository, scope=self.conflict_scope
        )
        self.resolver = resolver or AvailabilityResolver(
            db, clock=self.clock, conflict_checker=self.conflict_checker
        )
        self.state_machine = BookingStateMachine(self.clock)
        self._payment_service = payment_service

    @property
    def payment_service(self) -> PaymentIntentService:
        if self._payment_service is None:
            self._payment_service = PaymentIntentService(self.db, repository=self.repository)
        return self._payment_service

    def _get_for_update(self, booking_id: str) -> Booking:
        booking = self.repository.get_by_id_for_update(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        return booking

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.repository.get_by_id(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        return booking

    def list_bookings(
        self,
        *,
        tutor_id: Optional[str] = None,
        student_id: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        upcoming_only: bool = False,
        limit: int = 100,
    ) -> List[Booking]:
        """
        Bookings of exactly one tutor or one student.

        Raises:
            ValidationException: If neither or both participants are given
        """
        if (tutor_id is None) == (student_id is None):
            raise ValidationException(
                "Filter by exactly one of tutor_id or student_id", code="PARTICIPANT_REQUIRED"
            )
        return self.repository.get_bookings_for_participant(
            tutor_id=tutor_id,
            student_id=student_id,
            status=status,
            upcoming_after=self.clock.now() if upcoming_only else None,
            limit=limit,
        )

    def available_slots(self, tutor_id: str, day: date, duration_minutes: int = 60) -> List[datetime]:
        return self.resolver.available_slots(tutor_id, day, duration_minutes)

    @BaseService.measure_operation("request_booking")
    def request_booking(
        self,
        tutor_id: str,
        student_id: str,
        subject_id: str,
        start_at_utc: datetime,
        duration_minutes: int,
        session_type: Union[SessionType, str] = SessionType.ONLINE,
        price_cents: int = 0,
        currency: Optional[str] = None,
        conflict_scope: Union[ConflictScope, str, None] = None,
    ) -> BookingRequestResult:
        """
        Request a session; creates a PENDING booking when the slot is free.

        Resolution and insert run in one transaction. The insert re-checks
        for overlaps under the tutor's schedule lock, so two concurrent
        requests for the same slot cannot both be accepted.

        Returns:
            BookingRequestResult with either ``booking`` or ``reason`` set
        """
        scope = self.conflict_scope if conflict_scope is None else ConflictScope(conflict_scope)
        start = ensure_utc(start_at_utc)

        try:
            with self.transaction():
                decision = self.resolver.resolve(
                    tutor_id, student_id, start, duration_minutes, scope=scope
                )
                if not decision.accepted:
                    prometheus_metrics.inc_booking_request(decision.reason.value)
                    return BookingRequestResult.rejected(decision)

                end = start + timedelta(minutes=duration_minutes)
                booking = self.repository.create_if_no_conflict(
                    lambda existing: ConflictChecker.find_conflict(existing, start, end),
                    scope=scope,
                    student_id=student_id,
                    tutor_id=tutor_id,
                    subject_id=subject_id,
                    start_at_utc=start,
                    end_at_utc=end,
                    status=BookingStatus.PENDING.value,
                    session_type=SessionType(session_type).value,
                    price_cents=price_cents,
                    currency=(currency or settings.default_currency).upper(),
                    created_at=self.clock.now(),
                    updated_at=self.clock.now(),
                )
        except BookingConflictException as exc:
            self.logger.info(f"Slot for tutor {tutor_id} was taken concurrently: {exc.details}")
            prometheus_metrics.inc_booking_request(RejectionReason.CONFLICTING_BOOKING.value)
            return BookingRequestResult(
                reason=RejectionReason.CONFLICTING_BOOKING, details=dict(exc.details)
            )

        prometheus_metrics.inc_booking_request("accepted")
        self.logger.info(f"Booking {booking.id} created PENDING for tutor {tutor_id}")
        return BookingRequestResult(booking=booking)

    @BaseService.measure_operation("confirm_booking")
    def confirm_booking(self, booking_id: str) -> Booking:
        """
        Confirm a PENDING booking.

        Conflicts are re-checked under the tutor's schedule lock. If the slot
        was taken in the meantime the booking moves to REJECTED with reason
        CONFLICTING_BOOKING and is returned in that state.

        Raises:
            NotFoundException: Unknown booking
            IllegalTransitionException: Booking is not PENDING
        """
        try:
            with self.transaction():
                booking = self._get_for_update(booking_id)
                next_status(booking.status, BookingStatus.CONFIRMED, booking.id)

                self.repository.lock_tutor_schedule(booking.tutor_id)
                conflict = self.conflict_checker.check_conflict(
                    booking.tutor_id,
                    booking.student_id,
                    booking.start_at_utc,
                    booking.end_at_utc,
                    exclude_booking_id=booking.id,
                )
                if conflict is not None:
                    self.state_machine.transition(
                        booking,
                        BookingStatus.REJECTED,
                        reason=RejectionReason.CONFLICTING_BOOKING.value,
                    )
                    self.logger.info(
                        f"Booking {booking.id} rejected at confirmation: overlaps {conflict.id}"
                    )
                    return booking

                self.state_machine.transition(booking, BookingStatus.CONFIRMED)
                return self.repository.flush_status_change(booking)
        except BookingConflictException:
            # The database constraint saw an overlap the re-check missed
            return self.reject_booking(booking_id, RejectionReason.CONFLICTING_BOOKING.value)

    def _apply_transition(
        self, booking_id: str, target: BookingStatus, reason: Optional[str] = None
    ) -> Booking:
        with self.transaction():
            booking = self._get_for_update(booking_id)
            self.state_machine.transition(booking, target, reason=reason)
            return self.repository.flush_status_change(booking)

    @BaseService.measure_operation("reject_booking")
    def reject_booking(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        return self._apply_transition(booking_id, BookingStatus.REJECTED, reason)

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        """Withdraw a PENDING or CONFIRMED booking. Paid bookings must be refunded instead."""
        return self._apply_transition(booking_id, BookingStatus.CANCELLED, reason)

    @BaseService.measure_operation("complete_booking")
    def complete_booking(self, booking_id: str) -> Booking:
        return self._apply_transition(booking_id, BookingStatus.COMPLETED)

    @BaseService.measure_operation("refund_booking")
    def refund_booking(
        self,
        booking_id: str,
        reason: Optional[str] = None,
        issue_gateway_refund: bool = True,
    ) -> Booking:
        """
        Refund a PAID booking.

        The edge is validated before Stripe is called so an illegal refund
        never reaches the gateway.
        """
        with self.transaction():
            booking = self._get_for_update(booking_id)
            next_status(booking.status, BookingStatus.REFUNDED, booking.id)
            if issue_gateway_refund:
                self.payment_service.refund(booking, reason)
            self.state_machine.transition(booking, BookingStatus.REFUNDED, reason=reason)
            return self.repository.flush_status_change(booking)

    @BaseService.measure_operation("complete_finished_sessions")
    def complete_finished_sessions(self, limit: int = 500) -> List[str]:
        """Move PAID bookings whose session has ended to COMPLETED."""
        completed: List[str] = []
        with self.transaction():
            for booking in self.repository.get_paid_ended_before(self.clock.now(), limit):
                self.state_machine.transition(booking, BookingStatus.COMPLETED)
                completed.append(booking.id)
            self.repository.flush()
        if completed:
            self.logger.info(f"Completed {len(completed)} finished sessions")
        return completed
