# backend/tutorspool/routes/v1/tutors.py
"""
Tutor routes - API v1

Public, read-only endpoints under /api/v1/tutors.

Endpoints:
    GET /{tutor_id}/available-slots     → Open session starts for one UTC day
"""

import asyncio
from datetime import date
import logging

from fastapi import APIRouter, Depends, Query

from ...core.exceptions import DomainException
from ...schemas.booking import AvailableSlotsResponse
from ...services.booking_service import BookingService
from ...services.dependencies import get_booking_service
from .bookings import handle_domain_exception

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["tutors-v1"])


@router.get("/{tutor_id}/available-slots", response_model=AvailableSlotsResponse)
async def get_available_slots(
    tutor_id: str,
    day: date = Query(..., alias="date", description="UTC calendar day to list"),
    duration_minutes: int = Query(60, ge=15, le=720),
    booking_service: BookingService = Depends(get_booking_service),
) -> AvailableSlotsResponse:
    """
    List bookable start times for a tutor.

    Slots are laid out every 30 minutes inside the tutor's recurring blocks.
    Slots in the past or overlapping a pending, confirmed or paid booking of
    the tutor are left out.
    """
    try:
        slots = await asyncio.to_thread(
            booking_service.available_slots, tutor_id, day, duration_minutes
        )
    except DomainException as e:
        handle_domain_exception(e)

    return AvailableSlotsResponse(
        tutor_id=tutor_id, day=day, duration_minutes=duration_minutes, slots=slots
    )
