# backend/tutorspool/models/booking.py
"""
Booking model for the TutorsPool booking core.

A booking is one scheduled session between one student and one tutor for
one subject. Bookings are never physically deleted: cancellation, rejection
and refunds are status changes, and terminal records keep their history.

The ``status`` column is owned by BookingStateMachine; nothing else should
assign it directly.
"""

from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Optional

from sqlalchemy import CheckConstraint, Column, Index, Integer, String, Text
import ulid

from ..database import Base
from .types import UTCDateTime

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "PENDING"  # Requested, awaiting approval
    CONFIRMED = "CONFIRMED"  # Approved, awaiting payment
    PAID = "PAID"  # Payment captured by the gateway
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"  # Payment failed


TERMINAL_STATUSES = frozenset(
    {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.REFUNDED,
        BookingStatus.REJECTED,
        BookingStatus.FAILED,
    }
)


class SessionType(str, Enum):
    """Where the session takes place."""

    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"


class Booking(Base):
    """Scheduled tutoring session and its payment/meeting state."""

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    # Parties; profiles live outside the booking core
    student_id = Column(String(64), nullable=False)
    tutor_id = Column(String(64), nullable=False)
    subject_id = Column(String(64), nullable=False)

    start_at_utc = Column(UTCDateTime, nullable=False)
    end_at_utc = Column(UTCDateTime, nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    status_reason = Column(Text, nullable=True)

    price_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    session_type = Column(String(20), nullable=False, default=SessionType.ONLINE.value)

    # Meeting provisioning (online sessions only)
    meeting_link = Column(Text, nullable=True)
    meeting_passcode = Column(String(64), nullable=True)
    meeting_link_error = Column(Text, nullable=True)

    payment_intent_id = Column(String(255), nullable=True, index=True, comment="Stripe payment intent")

    # Timestamps
    created_at = Column(UTCDateTime, nullable=False, default=_now_utc)
    updated_at = Column(UTCDateTime, nullable=True, default=_now_utc, onupdate=_now_utc)
    confirmed_at = Column(UTCDateTime, nullable=True)
    paid_at = Column(UTCDateTime, nullable=True)
    failed_at = Column(UTCDateTime, nullable=True)
    rejected_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    refunded_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'PAID', 'REJECTED', 'CANCELLED', "
            "'COMPLETED', 'REFUNDED', 'FAILED')",
            name="ck_bookings_status",
        ),
        CheckConstraint("session_type IN ('ONLINE', 'OFFLINE')", name="ck_bookings_session_type"),
        CheckConstraint("start_at_utc < end_at_utc", name="check_time_order"),
        CheckConstraint("price_cents >= 0", name="check_price_non_negative"),
        Index("ix_bookings_tutor_start", "tutor_id", "start_at_utc"),
        Index("ix_bookings_pair", "student_id", "tutor_id"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = BookingStatus.PENDING.value
        logger.debug(f"Creating booking for student {self.student_id} with tutor {self.tutor_id}")

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: student={self.student_id}, tutor={self.tutor_id}, "
            f"start={self.start_at_utc}, end={self.end_at_utc}, status={self.status}>"
        )

    @property
    def status_enum(self) -> BookingStatus:
        return BookingStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_enum in TERMINAL_STATUSES

    @property
    def is_online(self) -> bool:
        return self.session_type == SessionType.ONLINE.value

    @property
    def duration_minutes(self) -> int:
        return int((self.end_at_utc - self.start_at_utc).total_seconds() // 60)

    @property
    def needs_meeting_link(self) -> bool:
        """Paid online session that still has no join link."""
        return (
            self.is_online
            and self.status == BookingStatus.PAID.value
            and not self.meeting_link
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "tutor_id": self.tutor_id,
            "subject_id": self.subject_id,
            "start_at_utc": self.start_at_utc.isoformat() if self.start_at_utc else None,
            "end_at_utc": self.end_at_utc.isoformat() if self.end_at_utc else None,
            "status": self.status,
            "status_reason": self.status_reason,
            "price_cents": self.price_cents,
            "currency": self.currency,
            "session_type": self.session_type,
            "meeting_link": self.meeting_link,
            "meeting_link_error": self.meeting_link_error,
            "payment_intent_id": self.payment_intent_id,
        }
