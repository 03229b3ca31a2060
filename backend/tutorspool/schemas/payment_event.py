"""
Payment gateway events as seen by the booking core.

Stripe delivers ``payment_intent.succeeded`` and
``payment_intent.payment_failed`` events; the booking reference travels in
the PaymentIntent metadata under ``booking_id`` (``bookingId`` is accepted
for intents created by the legacy checkout).
"""

from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.enums import PaymentEventType, ReconciliationOutcome
from .base import StandardizedModel, StrictModel

STRIPE_EVENT_TYPES: dict[str, PaymentEventType] = {
    "payment_intent.succeeded": PaymentEventType.SUCCEEDED,
    "payment_intent.payment_failed": PaymentEventType.FAILED,
}

BOOKING_METADATA_KEYS = ("booking_id", "bookingId")


class PaymentEvent(BaseModel):
    """A normalized gateway notification about one PaymentIntent."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    gateway_event_id: str = Field(..., min_length=1, description="Gateway's unique event id")
    type: PaymentEventType
    payment_intent_id: str = Field(..., min_length=1)
    booking_id: Optional[str] = Field(None, description="Booking reference from metadata")
    amount_cents: int = Field(0, ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    failure_message: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @field_validator("booking_id", mode="before")
    @classmethod
    def _blank_booking_id(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def from_stripe_event(cls, event: Mapping[str, Any]) -> Optional["PaymentEvent"]:
        """
        Build a PaymentEvent from a Stripe event payload.

        Returns None for event types the booking core does not reconcile.
        """
        event_type = STRIPE_EVENT_TYPES.get(str(event.get("type") or ""))
        if event_type is None:
            return None

        intent = (event.get("data") or {}).get("object") or {}
        metadata = intent.get("metadata") or {}
        booking_id = next(
            (metadata.get(key) for key in BOOKING_METADATA_KEYS if metadata.get(key)),
            None,
        )
        last_error = intent.get("last_payment_error") or {}

        return cls(
            gateway_event_id=event.get("id") or "",
            type=event_type,
            payment_intent_id=intent.get("id") or "",
            booking_id=booking_id,
            amount_cents=int(intent.get("amount_received") or intent.get("amount") or 0),
            currency=(intent.get("currency") or "usd"),
            failure_message=last_error.get("message") if event_type is PaymentEventType.FAILED else None,
        )


class ReconciliationResult(StandardizedModel):
    """What the reconciler did with one event. Hard failures raise instead."""

    outcome: ReconciliationOutcome
    booking_id: Optional[str] = None
    gateway_event_id: Optional[str] = None
    booking_status: Optional[str] = None
    meeting_link: Optional[str] = None
    meeting_error: Optional[str] = None
    message: str = ""


class WebhookResponse(StrictModel):
    """Acknowledgement returned to the payment gateway."""

    status: str
    event_type: str
    outcome: Optional[ReconciliationOutcome] = None
    booking_id: Optional[str] = None
    message: str = ""
