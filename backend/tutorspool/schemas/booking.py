"""Booking request/response DTOs for the HTTP layer."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field, field_validator

from ..core.clock import ensure_utc
from ..core.enums import RejectionReason
from ..models.booking import SessionType
from .base import StandardizedModel, StrictModel, StrictRequestModel


class BookingCreate(StrictRequestModel):
    """Request a session with a tutor at a specific UTC instant."""

    tutor_id: str = Field(..., min_length=1, description="Tutor to book")
    student_id: str = Field(..., min_length=1, description="Student requesting the session")
    subject_id: str = Field(..., min_length=1)
    start_at_utc: datetime = Field(..., description="Session start; naive values are taken as UTC")
    duration_minutes: int = Field(..., ge=1, le=720)
    session_type: SessionType = SessionType.ONLINE
    price_cents: int = Field(0, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)

    @field_validator("start_at_utc")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value


class BookingStatusChange(StrictRequestModel):
    """Optional free-text reason recorded with a status change."""

    reason: Optional[str] = Field(None, max_length=500)


class BookingResponse(StandardizedModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: str
    student_id: str
    tutor_id: str
    subject_id: str
    start_at_utc: datetime
    end_at_utc: datetime
    status: str
    status_reason: Optional[str] = None
    price_cents: int
    currency: str
    session_type: str
    meeting_link: Optional[str] = None
    meeting_link_error: Optional[str] = None
    payment_intent_id: Optional[str] = None
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None


class BookingRejectionResponse(StrictModel):
    """Returned with 409 when a requested slot cannot be booked."""

    reason: RejectionReason
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class PaymentIntentResponse(StrictModel):
    payment_intent_id: str
    client_secret: Optional[str] = None
    amount: int
    currency: str


class BookingListResponse(StrictModel):
    items: List[BookingResponse]
    total: int


class AvailableSlotsResponse(StrictModel):
    """Open session starts of one tutor on one UTC day."""

    tutor_id: str
    day: date
    duration_minutes: int
    slots: List[datetime]
