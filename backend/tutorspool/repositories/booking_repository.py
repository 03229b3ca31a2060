# backend/tutorspool/repositories/booking_repository.py
"""
Booking Repository for the TutorsPool booking core.

All booking queries live here, including the tutor-scoped schedule lock that
serializes accept-then-create and confirm against each other.
"""

from datetime import datetime
import logging
from typing import Callable, Iterable, List, Optional, Sequence, cast

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import ConflictScope
from ..core.exceptions import BookingConflictException, RepositoryException
from ..models.booking import Booking, BookingStatus, SessionType
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

OVERLAP_CONSTRAINT_NAMES = (
    "bookings_no_overlap_confirmed_pair",
    "bookings_no_overlap_confirmed_tutor",
)

ConflictFinder = Callable[[Sequence[Booking]], Optional[Booking]]


def overlap_constraint_from_error(error: IntegrityError) -> Optional[str]:
    """Return the overlap exclusion constraint named by ``error``, if any."""
    orig = getattr(error, "orig", None)
    diag = getattr(orig, "diag", None)
    constraint_name = ""
    if diag is not None:
        constraint_name = getattr(diag, "constraint_name", "") or ""
    if constraint_name in OVERLAP_CONSTRAINT_NAMES:
        return constraint_name
    message = str(orig) if orig is not None else str(error)
    for name in OVERLAP_CONSTRAINT_NAMES:
        if name in message:
            return name
    return None


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def get_by_id_for_update(self, booking_id: str) -> Optional[Booking]:
        """
        Load a booking with a row lock (``SELECT ... FOR UPDATE``).

        SQLite ignores the clause; its single-writer model serializes anyway.
        """
        try:
            query = self.db.query(Booking).filter(Booking.id == booking_id).with_for_update()
            return cast(Optional[Booking], query.first())
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock booking: {str(e)}")

    def lock_tutor_schedule(self, tutor_id: str) -> None:
        """
        Take a transaction-scoped lock on one tutor's schedule.

        Released automatically on commit/rollback. No-op outside PostgreSQL.
        """
        if self.dialect_name != "postgresql":
            return
        try:
            self.db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                {"key": f"tutor_schedule:{tutor_id}"},
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to lock schedule of tutor {tutor_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock tutor schedule: {str(e)}")

    def get_bookings_in_scope(
        self,
        *,
        tutor_id: str,
        student_id: str,
        scope: ConflictScope,
        statuses: Iterable[BookingStatus] = (BookingStatus.CONFIRMED,),
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Bookings that may block a new slot.

        PAIR scope returns only bookings between this student and tutor;
        TUTOR scope returns every booking of the tutor.
        """
        query = self._build_query().filter(
            Booking.tutor_id == tutor_id,
            Booking.status.in_([BookingStatus(s).value for s in statuses]),
        )
        if scope == ConflictScope.PAIR:
            query = query.filter(Booking.student_id == student_id)
        if exclude_booking_id:
            query = query.filter(Booking.id != exclude_booking_id)
        return self._execute_query(query.order_by(Booking.start_at_utc))

    def create_if_no_conflict(
        self,
        find_conflict: ConflictFinder,
        *,
        scope: ConflictScope,
        **fields: object,
    ) -> Booking:
        """
        Insert a booking after re-checking for overlaps under the tutor lock.

        ``find_conflict`` receives the bookings in scope and returns the one
        that blocks the new slot, if any.

        Raises:
            BookingConflictException: If a committed booking now overlaps
        """
        tutor_id = str(fields["tutor_id"])
        student_id = str(fields["student_id"])

        self.lock_tutor_schedule(tutor_id)
        existing = self.get_bookings_in_scope(tutor_id=tutor_id, student_id=student_id, scope=scope)
        blocking = find_conflict(existing)
        if blocking is not None:
            raise BookingConflictException(
                details={"conflicting_booking_id": blocking.id, "conflict_scope": scope.value}
            )

        try:
            booking = Booking(**fields)
            self.db.add(booking)
            self.db.flush()
            return booking
        except IntegrityError as e:
            constraint = overlap_constraint_from_error(e)
            if constraint is not None:
                raise BookingConflictException(details={"constraint": constraint}) from e
            self.logger.error(f"Integrity error creating booking: {str(e)}")
            raise RepositoryException(f"Failed to create booking: {str(e)}") from e
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating booking: {str(e)}")
            raise RepositoryException(f"Failed to create booking: {str(e)}") from e

    def flush_status_change(self, booking: Booking) -> Booking:
        """
        Flush a status change, translating overlap constraint violations.

        Raises:
            BookingConflictException: If the exclusion constraint refuses the row
        """
        try:
            self.db.flush()
            return booking
        except IntegrityError as e:
            constraint = overlap_constraint_from_error(e)
            if constraint is not None:
                raise BookingConflictException(
                    details={"booking_id": booking.id, "constraint": constraint}
                ) from e
            self.logger.error(f"Integrity error updating booking {booking.id}: {str(e)}")
            raise RepositoryException(f"Failed to update booking: {str(e)}") from e
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating booking {booking.id}: {str(e)}")
            raise RepositoryException(f"Failed to update booking: {str(e)}") from e

    def get_paid_ended_before(self, cutoff: datetime, limit: int = 500) -> List[Booking]:
        """PAID bookings whose session ended at or before ``cutoff``."""
        query = (
            self._build_query()
            .filter(
                Booking.status == BookingStatus.PAID.value,
                Booking.end_at_utc <= cutoff,
            )
            .order_by(Booking.end_at_utc)
            .limit(limit)
        )
        return self._execute_query(query)

    def get_paid_online_without_link(self, limit: int = 100) -> List[Booking]:
        """PAID online bookings still waiting for a meeting link."""
        query = (
            self._build_query()
            .filter(
                Booking.status == BookingStatus.PAID.value,
                Booking.session_type == SessionType.ONLINE.value,
                Booking.meeting_link.is_(None),
            )
            .order_by(Booking.paid_at)
            .limit(limit)
        )
        return self._execute_query(query)

    def get_tutor_bookings_between(
        self,
        tutor_id: str,
        window_start: datetime,
        window_end: datetime,
        statuses: Iterable[BookingStatus],
    ) -> List[Booking]:
        """Tutor bookings in ``statuses`` that overlap ``[window_start, window_end)``."""
        query = (
            self._build_query()
            .filter(
                Booking.tutor_id == tutor_id,
                Booking.status.in_([BookingStatus(s).value for s in statuses]),
                Booking.start_at_utc < window_end,
                Booking.end_at_utc > window_start,
            )
            .order_by(Booking.start_at_utc)
        )
        return self._execute_query(query)

    def get_bookings_for_participant(
        self,
        *,
        tutor_id: Optional[str] = None,
        student_id: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        upcoming_after: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[Booking]:
        """
        Bookings of one tutor or one student, soonest first.

        Args:
            tutor_id: Filter by tutor
            student_id: Filter by student
            status: Only bookings in this status
            upcoming_after: Only sessions starting after this instant
            limit: Maximum rows returned
        """
        query = self._build_query()
        if tutor_id is not None:
            query = query.filter(Booking.tutor_id == tutor_id)
        if student_id is not None:
            query = query.filter(Booking.student_id == student_id)
        if status is not None:
            query = query.filter(Booking.status == BookingStatus(status).value)
        if upcoming_after is not None:
            query = query.filter(Booking.start_at_utc > upcoming_after)
        return self._execute_query(query.order_by(Booking.start_at_utc).limit(limit))
