# backend/tests/conftest.py
"""
Pytest configuration for the booking core.

Every test gets a fresh in-memory SQLite database. PostgreSQL-only features
(advisory locks, exclusion constraints) are no-ops there; the service-level
re-checks are what the tests exercise.
"""

import os

# Set testing mode BEFORE any tutorspool imports
os.environ["IS_TESTING"] = "true"
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["MEETING_PROVIDER_ENABLED"] = "false"

from datetime import datetime, time, timedelta
from typing import Callable, Iterator, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tutorspool.core.clock import FixedClock
from tutorspool.core.config import settings
from tutorspool.database import Base
from tutorspool.integrations.meeting_client import FakeMeetingClient
from tutorspool.models import AvailabilityBlock, Booking, BookingStatus, SessionType

from tests.factories.booking_data import MONDAY, NOW, STUDENT_ID, SUBJECT_ID, TUTOR_ID, at

settings.is_testing = True


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(engine) -> Iterator[Session]:
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def meeting_client() -> FakeMeetingClient:
    return FakeMeetingClient()


@pytest.fixture
def add_block(db: Session) -> Callable[..., AvailabilityBlock]:
    def _add_block(
        tutor_id: str = TUTOR_ID,
        day_of_week: int = MONDAY,
        start: time = time(9, 0),
        end: time = time(17, 0),
        recurring: bool = True,
    ) -> AvailabilityBlock:
        block = AvailabilityBlock(
            tutor_id=tutor_id,
            day_of_week=day_of_week,
            start_time=start,
            end_time=end,
            recurring=recurring,
        )
        db.add(block)
        db.commit()
        return block

    return _add_block


@pytest.fixture
def make_booking(db: Session) -> Callable[..., Booking]:
    """Insert a booking row directly, bypassing the lifecycle rules."""

    def _make_booking(
        start: Optional[datetime] = None,
        duration_minutes: int = 60,
        status: BookingStatus = BookingStatus.CONFIRMED,
        student_id: str = STUDENT_ID,
        tutor_id: str = TUTOR_ID,
        session_type: SessionType = SessionType.ONLINE,
        price_cents: int = 5000,
        **extra,
    ) -> Booking:
        start = start or at(10)
        booking = Booking(
            student_id=student_id,
            tutor_id=tutor_id,
            subject_id=SUBJECT_ID,
            start_at_utc=start,
            end_at_utc=start + timedelta(minutes=duration_minutes),
            status=status.value,
            session_type=session_type.value,
            price_cents=price_cents,
            currency="USD",
            **extra,
        )
        db.add(booking)
        db.commit()
        return booking

    return _make_booking


@pytest.fixture
def monday_block(add_block) -> AvailabilityBlock:
    return add_block()
