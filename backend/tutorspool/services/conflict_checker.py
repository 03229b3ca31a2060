# backend/tutorspool/services/conflict_checker.py
"""
Conflict Checker Service for the TutorsPool booking core.

Decides whether a candidate slot overlaps an existing booking that still
holds its time. Intervals are half-open, ``[start, end)``, so back-to-back
sessions (one ending exactly when the next starts) never conflict.

Only CONFIRMED bookings block a slot. Which bookings are looked at depends
on the conflict scope: the same student/tutor pair (default) or every
booking of the tutor.

The slot listing is stricter and tutor-wide: any PENDING, CONFIRMED or PAID
booking of the tutor hides the slots it overlaps.
"""

from datetime import datetime, timedelta
import logging
from typing import Iterable, List, Optional, Sequence, Union

from sqlalchemy.orm import Session

from ..core.clock import ensure_utc
from ..core.config import settings
from ..core.enums import ConflictScope
from ..models.booking import Booking, BookingStatus
from ..repositories import RepositoryFactory
from ..repositories.booking_repository import BookingRepository
from .base import BaseService

logger = logging.getLogger(__name__)

CONFLICT_STATUSES = frozenset({BookingStatus.CONFIRMED})

# Bookings that hide a slot from the public slot listing
SLOT_HOLDING_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.PAID}
)


def intervals_overlap(
    start: datetime,
    end: datetime,
    other_start: datetime,
    other_end: datetime,
) -> bool:
    """
    Three-way overlap test on half-open intervals.

    True when the candidate starts inside the other interval, ends inside
    it, or fully spans it.
    """
    start, end = ensure_utc(start), ensure_utc(end)
    other_start, other_end = ensure_utc(other_start), ensure_utc(other_end)
    starts_inside = other_start <= start < other_end
    ends_inside = other_start < end <= other_end
    spans = start <= other_start and end >= other_end
    return starts_inside or ends_inside or spans


def resolve_scope(scope: Union[ConflictScope, str, None]) -> ConflictScope:
    """Per-call scope if given, otherwise the configured default."""
    if scope is None:
        scope = settings.booking_conflict_scope
    return ConflictScope(scope)


class ConflictChecker(BaseService):
    """Overlap detection against committed bookings."""

    def __init__(
        self,
        db: Session,
        repository: Optional[BookingRepository] = None,
        scope: Union[ConflictScope, str, None] = None,
    ):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_booking_repository(db)
        self.scope = resolve_scope(scope)

    @staticmethod
    def find_conflict(
        bookings: Iterable[Booking],
        start: datetime,
        end: datetime,
    ) -> Optional[Booking]:
        """First status-relevant booking overlapping ``[start, end)``, if any."""
        for booking in bookings:
            if BookingStatus(booking.status) not in CONFLICT_STATUSES:
                continue
            if intervals_overlap(start, end, booking.start_at_utc, booking.end_at_utc):
                return booking
        return None

    def load_candidates(
        self,
        tutor_id: str,
        student_id: str,
        scope: Union[ConflictScope, str, None] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> Sequence[Booking]:
        return self.repository.get_bookings_in_scope(
            tutor_id=tutor_id,
            student_id=student_id,
            scope=self.scope if scope is None else ConflictScope(scope),
            statuses=CONFLICT_STATUSES,
            exclude_booking_id=exclude_booking_id,
        )

    @BaseService.measure_operation("check_conflict")
    def check_conflict(
        self,
        tutor_id: str,
        student_id: str,
        start: datetime,
        end: datetime,
        scope: Union[ConflictScope, str, None] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> Optional[Booking]:
        """
        Return the booking that blocks ``[start, end)``, or None.

        Args:
            tutor_id: Tutor of the candidate slot
            student_id: Student of the candidate slot
            start: Candidate start (UTC)
            end: Candidate end (UTC), exclusive
            scope: Overrides the configured conflict scope
            exclude_booking_id: Booking to ignore, e.g. the one being confirmed
        """
        candidates = self.load_candidates(tutor_id, student_id, scope, exclude_booking_id)
        conflict = self.find_conflict(candidates, start, end)
        if conflict is not None:
            self.logger.info(
                f"Slot {start.isoformat()}-{end.isoformat()} for tutor {tutor_id} "
                f"conflicts with booking {conflict.id}"
            )
        return conflict

    @BaseService.measure_operation("free_slots")
    def free_slots(
        self,
        tutor_id: str,
        starts: Sequence[datetime],
        duration_minutes: int,
    ) -> List[datetime]:
        """Keep the ``starts`` whose session overlaps none of the tutor's held bookings."""
        if not starts:
            return []
        length = timedelta(minutes=duration_minutes)
        window_start = min(starts)
        window_end = max(starts) + length
        held = self.repository.get_tutor_bookings_between(
            tutor_id, window_start, window_end, SLOT_HOLDING_STATUSES
        )
        return [
            start
            for start in starts
            if not any(
                intervals_overlap(start, start + length, b.start_at_utc, b.end_at_utc)
                for b in held
            )
        ]
