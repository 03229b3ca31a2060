# backend/tutorspool/services/booking_state_machine.py
"""
Booking lifecycle state machine.

The transition table below is the only definition of which status changes
are legal. Every component that changes ``Booking.status`` goes through
``BookingStateMachine.transition``; an illegal edge raises
IllegalTransitionException and leaves the booking untouched.

    PENDING   -> CONFIRMED | REJECTED | CANCELLED
    CONFIRMED -> PAID | FAILED | CANCELLED
    PAID      -> COMPLETED | REFUNDED

COMPLETED, CANCELLED, REFUNDED, REJECTED and FAILED are terminal.
"""

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Dict, FrozenSet, Optional, Union

from ..core.clock import Clock, system_clock
from ..core.exceptions import IllegalTransitionException
from ..models.booking import Booking, BookingStatus
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.REJECTED, BookingStatus.CANCELLED}
    ),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.PAID, BookingStatus.FAILED, BookingStatus.CANCELLED}
    ),
    BookingStatus.PAID: frozenset({BookingStatus.COMPLETED, BookingStatus.REFUNDED}),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.REFUNDED: frozenset(),
    BookingStatus.FAILED: frozenset(),
}

# Timestamp column stamped when a booking enters each status
STATUS_TIMESTAMPS: Dict[BookingStatus, str] = {
    BookingStatus.CONFIRMED: "confirmed_at",
    BookingStatus.PAID: "paid_at",
    BookingStatus.FAILED: "failed_at",
    BookingStatus.REJECTED: "rejected_at",
    BookingStatus.CANCELLED: "cancelled_at",
    BookingStatus.COMPLETED: "completed_at",
    BookingStatus.REFUNDED: "refunded_at",
}

StatusLike = Union[BookingStatus, str]


def is_legal(current: StatusLike, target: StatusLike) -> bool:
    return BookingStatus(target) in TRANSITIONS[BookingStatus(current)]


def next_status(
    current: StatusLike, target: StatusLike, booking_id: Optional[str] = None
) -> BookingStatus:
    """
    Validate one edge of the lifecycle graph.

    Returns the target status, or raises IllegalTransitionException.
    """
    current_status = BookingStatus(current)
    target_status = BookingStatus(target)
    if target_status not in TRANSITIONS[current_status]:
        raise IllegalTransitionException(current_status.value, target_status.value, booking_id)
    return target_status


@dataclass(frozen=True)
class TransitionResult:
    booking_id: str
    from_status: BookingStatus
    to_status: BookingStatus
    at: datetime
    provision_meeting: bool = False


class BookingStateMachine:
    """Applies legal status transitions to Booking rows."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or system_clock
        self.logger = logging.getLogger(self.__class__.__name__)

    def can_transition(self, booking: Booking, target: StatusLike) -> bool:
        return is_legal(booking.status, target)

    def transition(
        self,
        booking: Booking,
        target: StatusLike,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        """
        Move ``booking`` to ``target``, stamping the matching timestamp.

        The caller owns persistence; this only mutates the ORM object.

        Raises:
            IllegalTransitionException: If ``target`` is not reachable from
                the booking's current status. The booking is not modified.
        """
        from_status = BookingStatus(booking.status)
        try:
            to_status = next_status(from_status, target, booking.id)
        except IllegalTransitionException:
            prometheus_metrics.inc_illegal_transition(from_status.value, BookingStatus(target).value)
            self.logger.warning(
                f"Refused transition {from_status.value} -> {BookingStatus(target).value} "
                f"for booking {booking.id}"
            )
            raise

        now = self.clock.now()
        booking.status = to_status.value
        timestamp_field = STATUS_TIMESTAMPS.get(to_status)
        if timestamp_field:
            setattr(booking, timestamp_field, now)
        if reason is not None:
            booking.status_reason = reason
        booking.updated_at = now

        prometheus_metrics.inc_transition(from_status.value, to_status.value)
        self.logger.info(f"Booking {booking.id}: {from_status.value} -> {to_status.value}")

        return TransitionResult(
            booking_id=booking.id,
            from_status=from_status,
            to_status=to_status,
            at=now,
            provision_meeting=(
                from_status == BookingStatus.CONFIRMED
                and to_status == BookingStatus.PAID
                and booking.is_online
            ),
        )
