# backend/tutorspool/services/availability_index.py
"""
Weekly availability lookup for one tutor.

The index is an in-memory snapshot of a tutor's recurring blocks, built per
request from the availability repository. It tells whether a UTC instant
falls inside an open block and lays out bookable slot starts for a day.

Day numbering is 0 = Sunday ... 6 = Saturday. Times are compared to the
second, and both block bounds are inclusive, so a request starting at
exactly the block end is still inside the block.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..core.clock import ensure_utc

SLOT_STEP_MINUTES = 30


def day_of_week(instant: datetime) -> int:
    """Day of week of a UTC instant with Sunday as 0."""
    return (ensure_utc(instant).weekday() + 1) % 7


def time_of_day(instant: datetime) -> time:
    """UTC time-of-day to the second."""
    utc = ensure_utc(instant)
    return time(utc.hour, utc.minute, utc.second)


@dataclass(frozen=True)
class WeeklyBlock:
    """One open interval in a tutor's week."""

    day_of_week: int
    start_time: time
    end_time: time
    recurring: bool = True
    id: Optional[str] = None

    def __post_init__(self) -> None:
        if not 0 <= self.day_of_week <= 6:
            raise ValueError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        if not self.start_time < self.end_time:
            raise ValueError("Availability block start_time must be before end_time")

    @classmethod
    def from_model(cls, block: Any) -> "WeeklyBlock":
        return cls(
            day_of_week=block.day_of_week,
            start_time=block.start_time,
            end_time=block.end_time,
            recurring=bool(block.recurring),
            id=getattr(block, "id", None),
        )

    def contains(self, moment: time) -> bool:
        return self.start_time <= moment <= self.end_time


class AvailabilityIndex:
    """Recurring weekly blocks of a single tutor, grouped by day."""

    def __init__(self, tutor_id: str, blocks: Iterable[WeeklyBlock]):
        self.tutor_id = tutor_id
        self._blocks: List[WeeklyBlock] = list(blocks)
        self._by_day: Dict[int, List[WeeklyBlock]] = {}
        for block in self._blocks:
            if block.recurring:
                self._by_day.setdefault(block.day_of_week, []).append(block)
        for day_blocks in self._by_day.values():
            day_blocks.sort(key=lambda b: b.start_time)

    @classmethod
    def from_models(cls, tutor_id: str, blocks: Iterable[Any]) -> "AvailabilityIndex":
        return cls(tutor_id, (WeeklyBlock.from_model(b) for b in blocks))

    @property
    def is_empty(self) -> bool:
        """True when the tutor has configured no blocks at all."""
        return not self._blocks

    def blocks_for_day(self, day: int) -> List[WeeklyBlock]:
        return list(self._by_day.get(day, []))

    def find_block(
        self,
        start: datetime,
        duration_minutes: Optional[int] = None,
    ) -> Optional[WeeklyBlock]:
        """
        Return the recurring block containing ``start``.

        When ``duration_minutes`` is given the whole session must also end
        within the same block on the same day.
        """
        start = ensure_utc(start)
        moment = time_of_day(start)
        for block in self._by_day.get(day_of_week(start), []):
            if not block.contains(moment):
                continue
            if duration_minutes is not None:
                block_end = datetime.combine(start.date(), block.end_time, tzinfo=start.tzinfo)
                if start + timedelta(minutes=duration_minutes) > block_end:
                    continue
            return block
        return None

    def slot_starts(
        self,
        day: date,
        duration_minutes: int,
        step_minutes: int = SLOT_STEP_MINUTES,
    ) -> List[datetime]:
        """
        Candidate session starts on ``day`` (UTC).

        Starts are laid out every ``step_minutes`` from each block's start and
        only kept while the whole session still ends inside that block.
        """
        if duration_minutes <= 0 or step_minutes <= 0:
            raise ValueError("duration_minutes and step_minutes must be positive")
        length = timedelta(minutes=duration_minutes)
        step = timedelta(minutes=step_minutes)
        weekday = (day.weekday() + 1) % 7
        starts = set()
        for block in self._by_day.get(weekday, []):
            current = datetime.combine(day, block.start_time, tzinfo=timezone.utc)
            block_end = datetime.combine(day, block.end_time, tzinfo=timezone.utc)
            while current + length <= block_end:
                starts.add(current)
                current += step
        return sorted(starts)
