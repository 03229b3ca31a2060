# backend/tutorspool/models/availability.py
"""
Recurring weekly availability for tutors.

Blocks are owned by the tutor profile (outside the booking core); the
booking core only reads them as a snapshot per request.

``day_of_week`` follows the 0 = Sunday ... 6 = Saturday convention used by
the profile forms; times are UTC time-of-day.
"""

from datetime import datetime, time, timezone
from typing import Any

from sqlalchemy import Boolean, CheckConstraint, Column, Index, Integer, String, Time
from sqlalchemy.orm import validates
import ulid

from ..database import Base
from .types import UTCDateTime


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class AvailabilityBlock(Base):
    """One weekly open interval of a tutor."""

    __tablename__ = "availability_blocks"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    tutor_id = Column(String(64), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    recurring = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False, default=_now_utc)

    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_day_of_week"),
        CheckConstraint("start_time < end_time", name="ck_availability_time_order"),
        Index("ix_availability_blocks_tutor_day", "tutor_id", "day_of_week"),
    )

    @validates("day_of_week")
    def _validate_day(self, key: str, value: int) -> int:
        if value is None or not 0 <= int(value) <= 6:
            raise ValueError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        return int(value)

    @validates("end_time")
    def _validate_end(self, key: str, value: time) -> time:
        start = self.start_time
        if start is not None and value is not None and not start < value:
            raise ValueError("Availability block start_time must be before end_time")
        return value

    def __repr__(self) -> str:
        return (
            f"<AvailabilityBlock tutor={self.tutor_id} day={self.day_of_week} "
            f"{self.start_time}-{self.end_time} recurring={self.recurring}>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tutor_id": self.tutor_id,
            "day_of_week": self.day_of_week,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "recurring": self.recurring,
        }
