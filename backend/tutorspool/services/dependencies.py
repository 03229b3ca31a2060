# backend/tutorspool/services/dependencies.py
"""
Dependency injection functions for services.

Usage in routes:
    booking_service: BookingService = Depends(get_booking_service)
"""

import logging
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from ..core.clock import Clock, system_clock
from ..database import get_db
from ..integrations.meeting_client import (
    FakeMeetingClient,
    MeetingProviderClient,
    MeetingProviderError,
    build_meeting_client,
)
from .booking_service import BookingService
from .meeting_provisioner import MeetingProvisioner
from .payment_intent_service import PaymentIntentService
from .payment_reconciler import PaymentWebhookReconciler

logger = logging.getLogger(__name__)


def get_clock() -> Clock:
    return system_clock


def get_meeting_client() -> Optional[MeetingProviderClient | FakeMeetingClient]:
    """
    Meeting client for the request, or None when the provider is misconfigured.

    None leaves the provisioner to build the client on use, where the failure
    is recorded on the booking instead of failing the webhook.
    """
    try:
        return build_meeting_client()
    except MeetingProviderError as e:
        logger.error(f"Meeting client unavailable: {e.message}")
        return None


def get_payment_intent_service(db: Session = Depends(get_db)) -> PaymentIntentService:
    return PaymentIntentService(db)


def get_booking_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    payment_service: PaymentIntentService = Depends(get_payment_intent_service),
) -> BookingService:
    return BookingService(db, clock=clock, payment_service=payment_service)


def get_payment_reconciler(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    meeting_client: Optional[MeetingProviderClient | FakeMeetingClient] = Depends(get_meeting_client),
) -> PaymentWebhookReconciler:
    return PaymentWebhookReconciler(
        db,
        clock=clock,
        meeting_provisioner=MeetingProvisioner(db, client=meeting_client),
    )
