# backend/tutorspool/services/availability_resolver.py
"""
Availability Resolver for the TutorsPool booking core.

Combines the tutor's weekly availability with conflict detection into a
single accept/reject decision. Rejections are typed results carrying a
stable reason code; the resolver never raises for a business rejection.

Order of checks:
1. Request sanity (same person, duration, start in the past)
2. Tutor has any availability at all
3. Requested start falls inside a recurring block
4. No overlapping committed booking in the conflict scope

The same pieces list a tutor's open slots for one day.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from ..core.clock import Clock, ensure_utc, system_clock
from ..core.config import settings
from ..core.enums import REJECTION_MESSAGES, ConflictScope, RejectionReason
from ..repositories import RepositoryFactory
from ..repositories.availability_repository import AvailabilityRepository
from .availability_index import SLOT_STEP_MINUTES, AvailabilityIndex
from .base import BaseService
from .conflict_checker import ConflictChecker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityDecision:
    """Outcome of resolving one requested slot."""

    accepted: bool
    reason: Optional[RejectionReason] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def accept(cls) -> "AvailabilityDecision":
        return cls(accepted=True)

    @classmethod
    def reject(cls, reason: RejectionReason, **details: Any) -> "AvailabilityDecision":
        return cls(accepted=False, reason=reason, details=details)

    @property
    def message(self) -> Optional[str]:
        return REJECTION_MESSAGES[self.reason] if self.reason else None


class AvailabilityResolver(BaseService):
    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        availability_repository: Optional[AvailabilityRepository] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        enforce_block_end: Optional[bool] = None,
    ):
        super().__init__(db)
        self.clock = clock or system_clock
        self.availability_repository = (
            availability_repository or RepositoryFactory.create_availability_repository(db)
        )
        self.conflict_checker = conflict_checker or ConflictChecker(db)
        self.enforce_block_end = (
            settings.availability_enforce_block_end
            if enforce_block_end is None
            else enforce_block_end
        )

    def load_index(self, tutor_id: str) -> AvailabilityIndex:
        blocks = self.availability_repository.get_blocks_for_tutor(tutor_id)
        return AvailabilityIndex.from_models(tutor_id, blocks)

    @BaseService.measure_operation("available_slots")
    def available_slots(
        self,
        tutor_id: str,
        day: date,
        duration_minutes: int = 60,
        step_minutes: int = SLOT_STEP_MINUTES,
    ) -> List[datetime]:
        """
        Open session starts for ``tutor_id`` on ``day`` (UTC).

        A slot must fit a recurring block, start in the future and overlap no
        PENDING, CONFIRMED or PAID booking of the tutor.
        """
        index = self.load_index(tutor_id)
        now = self.clock.now()
        starts = [
            start
            for start in index.slot_starts(day, duration_minutes, step_minutes)
            if start > now
        ]
        return self.conflict_checker.free_slots(tutor_id, starts, duration_minutes)

    @BaseService.measure_operation("resolve_availability")
    def resolve(
        self,
        tutor_id: str,
        student_id: str,
        requested_start: datetime,
        duration_minutes: int,
        scope: Union[ConflictScope, str, None] = None,
    ) -> AvailabilityDecision:
        """
        Decide whether the requested slot may become a booking.

        Args:
            tutor_id: Tutor being booked
            student_id: Student requesting the session
            requested_start: Session start; naive values are taken as UTC
            duration_minutes: Session length
            scope: Overrides the configured conflict scope

        Returns:
            AvailabilityDecision, accepted or carrying a RejectionReason
        """
        decision = self._resolve(tutor_id, student_id, requested_start, duration_minutes, scope)
        if not decision.accepted:
            self.logger.info(
                f"Rejected slot {requested_start} ({duration_minutes} min) for tutor {tutor_id}, "
                f"student {student_id}: {decision.reason.value}"
            )
        return decision

    def _resolve(
        self,
        tutor_id: str,
        student_id: str,
        requested_start: datetime,
        duration_minutes: int,
        scope: Union[ConflictScope, str, None],
    ) -> AvailabilityDecision:
        if student_id == tutor_id:
            return AvailabilityDecision.reject(RejectionReason.SAME_PERSON)
        if duration_minutes is None or duration_minutes <= 0:
            return AvailabilityDecision.reject(
                RejectionReason.INVALID_DURATION, duration_minutes=duration_minutes
            )

        start = ensure_utc(requested_start)
        if start <= self.clock.now():
            return AvailabilityDecision.reject(RejectionReason.START_IN_PAST)
        end = start + timedelta(minutes=duration_minutes)

        index = self.load_index(tutor_id)
        if index.is_empty:
            return AvailabilityDecision.reject(RejectionReason.NO_AVAILABILITY_CONFIGURED)

        block = index.find_block(
            start, duration_minutes if self.enforce_block_end else None
        )
        if block is None:
            return AvailabilityDecision.reject(RejectionReason.OUTSIDE_WORKING_HOURS)

        conflict = self.conflict_checker.check_conflict(tutor_id, student_id, start, end, scope=scope)
        if conflict is not None:
            return AvailabilityDecision.reject(
                RejectionReason.CONFLICTING_BOOKING, conflicting_booking_id=conflict.id
            )

        return AvailabilityDecision.accept()
