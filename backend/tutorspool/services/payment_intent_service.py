# backend/tutorspool/services/payment_intent_service.py
"""
Stripe PaymentIntent handling for confirmed bookings.

The booking id is written into the intent metadata; Stripe echoes it back
in ``payment_intent.*`` webhook events, which is how the reconciler finds
the booking again.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session
import stripe

from ..core.config import settings
from ..core.exceptions import BusinessRuleException, NotFoundException, ServiceException
from ..models.booking import Booking, BookingStatus
from ..repositories import RepositoryFactory
from ..repositories.booking_repository import BookingRepository
from .base import BaseService


@dataclass(frozen=True)
class PaymentIntentInfo:
    payment_intent_id: str
    client_secret: Optional[str]
    amount: int
    currency: str


class PaymentIntentService(BaseService):
    def __init__(self, db: Session, repository: Optional[BookingRepository] = None):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_booking_repository(db)

        self.stripe_configured = settings.stripe_configured
        if self.stripe_configured:
            stripe.api_key = settings.stripe_secret_key.get_secret_value()
            stripe.max_network_retries = 1
        else:
            self.logger.warning("Stripe secret key not configured - payment intents are unavailable")

    def _require_stripe(self) -> None:
        if not self.stripe_configured:
            raise ServiceException("Payment gateway is not configured", code="STRIPE_NOT_CONFIGURED")

    @BaseService.measure_operation("create_payment_intent")
    def create_for_booking(self, booking_id: str) -> PaymentIntentInfo:
        """
        Create (or return the existing) PaymentIntent for a CONFIRMED booking.

        Raises:
            NotFoundException: Unknown booking
            BusinessRuleException: Booking is not awaiting payment
            ServiceException: Stripe is unavailable or refused the request
        """
        self._require_stripe()

        with self.transaction():
            booking = self.repository.get_by_id_for_update(booking_id)
            if booking is None:
                raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
            if booking.status != BookingStatus.CONFIRMED.value:
                raise BusinessRuleException(
                    "Only confirmed bookings can be paid",
                    code="BOOKING_NOT_PAYABLE",
                    details={"booking_id": booking.id, "status": booking.status},
                )

            if booking.payment_intent_id:
                intent = self._retrieve(booking.payment_intent_id)
            else:
                intent = self._create(booking)
                booking.payment_intent_id = intent["id"]
                self.repository.flush()

        return PaymentIntentInfo(
            payment_intent_id=intent["id"],
            client_secret=intent.get("client_secret"),
            amount=int(intent.get("amount") or booking.price_cents),
            currency=str(intent.get("currency") or booking.currency).upper(),
        )

    def _create(self, booking: Booking) -> Dict[str, Any]:
        try:
            intent = stripe.PaymentIntent.create(
                amount=booking.price_cents,
                currency=(booking.currency or settings.default_currency).lower(),
                automatic_payment_methods={"enabled": True},
                metadata={
                    "booking_id": booking.id,
                    "student_id": booking.student_id,
                    "tutor_id": booking.tutor_id,
                },
                idempotency_key=f"booking-intent-{booking.id}",
            )
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error creating payment intent for booking {booking.id}: {str(e)}")
            raise ServiceException(f"Failed to create payment intent: {str(e)}")
        self.logger.info(f"Created payment intent {intent['id']} for booking {booking.id}")
        return intent

    def _retrieve(self, payment_intent_id: str) -> Dict[str, Any]:
        try:
            return stripe.PaymentIntent.retrieve(payment_intent_id)
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error retrieving payment intent {payment_intent_id}: {str(e)}")
            raise ServiceException(f"Failed to retrieve payment intent: {str(e)}")

    @BaseService.measure_operation("refund_payment")
    def refund(self, booking: Booking, reason: Optional[str] = None) -> Optional[str]:
        """
        Refund the booking's captured payment in full.

        Returns the Stripe refund id, or None for bookings paid outside Stripe.
        """
        if not booking.payment_intent_id:
            return None
        self._require_stripe()
        try:
            refund = stripe.Refund.create(
                payment_intent=booking.payment_intent_id,
                metadata={"booking_id": booking.id, "reason": reason or ""},
                idempotency_key=f"booking-refund-{booking.id}",
            )
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error refunding booking {booking.id}: {str(e)}")
            raise ServiceException(f"Failed to refund payment: {str(e)}")
        self.logger.info(f"Refunded payment {booking.payment_intent_id} for booking {booking.id}")
        return refund["id"]
