# backend/tutorspool/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
Authentication and user resolution happen upstream; these routes take the
student and tutor ids as given.

Endpoints:
    GET /                               → List bookings of one tutor or one student
    GET /{booking_id}                   → Get one booking
    POST /                              → Request a booking (201, or 409 with reason)
    POST /{booking_id}/confirm          → Confirm a PENDING booking
    POST /{booking_id}/reject           → Reject a PENDING booking
    POST /{booking_id}/cancel           → Cancel a PENDING or CONFIRMED booking
    POST /{booking_id}/complete         → Complete a PAID booking
    POST /{booking_id}/refund           → Refund a PAID booking
    POST /{booking_id}/payment-intent   → Create the Stripe PaymentIntent
"""

import asyncio
import logging
from typing import NoReturn, Optional, Union

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status
from fastapi.responses import JSONResponse

from ...core.exceptions import DomainException
from ...models.booking import BookingStatus
from ...schemas.booking import (
    BookingCreate,
    BookingListResponse,
    BookingRejectionResponse,
    BookingResponse,
    BookingStatusChange,
    PaymentIntentResponse,
)
from ...services.booking_service import BookingService
from ...services.dependencies import get_booking_service, get_payment_intent_service
from ...services.payment_intent_service import PaymentIntentService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def booking_id_path() -> str:
    return Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    )


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("", response_model=BookingListResponse)
async def list_bookings(
    tutor_id: Optional[str] = Query(None, min_length=1),
    student_id: Optional[str] = Query(None, min_length=1),
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    upcoming_only: bool = False,
    limit: int = Query(100, ge=1, le=500),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingListResponse:
    """
    List the bookings of one tutor or one student, soonest first.

    Exactly one of ``tutor_id`` and ``student_id`` is required.
    """
    try:
        bookings = await asyncio.to_thread(
            booking_service.list_bookings,
            tutor_id=tutor_id,
            student_id=student_id,
            status=status_filter,
            upcoming_only=upcoming_only,
            limit=limit,
        )
    except DomainException as e:
        handle_domain_exception(e)

    items = [BookingResponse.model_validate(b) for b in bookings]
    return BookingListResponse(items=items, total=len(items))


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str = booking_id_path(),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(booking_service.get_booking, booking_id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": BookingRejectionResponse, "description": "Slot cannot be booked"}},
)
async def request_booking(
    payload: BookingCreate,
    booking_service: BookingService = Depends(get_booking_service),
) -> Union[BookingResponse, JSONResponse]:
    """Request a session; the response explains why when the slot is refused."""
    try:
        result = await asyncio.to_thread(
            booking_service.request_booking,
            payload.tutor_id,
            payload.student_id,
            payload.subject_id,
            payload.start_at_utc,
            payload.duration_minutes,
            payload.session_type,
            payload.price_cents,
            payload.currency,
        )
    except DomainException as e:
        handle_domain_exception(e)

    if not result.accepted:
        rejection = BookingRejectionResponse(
            reason=result.reason,
            message=result.message or "",
            details=result.details,
        )
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT, content=rejection.model_dump(mode="json")
        )
    return BookingResponse.model_validate(result.booking)


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: str = booking_id_path(),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Confirm a PENDING booking. A slot taken meanwhile yields a REJECTED booking."""
    try:
        booking = await asyncio.to_thread(booking_service.confirm_booking, booking_id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    booking_id: str = booking_id_path(),
    payload: Optional[BookingStatusChange] = Body(None),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.reject_booking, booking_id, payload.reason if payload else None
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str = booking_id_path(),
    payload: Optional[BookingStatusChange] = Body(None),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.cancel_booking, booking_id, payload.reason if payload else None
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: str = booking_id_path(),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(booking_service.complete_booking, booking_id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/refund", response_model=BookingResponse)
async def refund_booking(
    booking_id: str = booking_id_path(),
    payload: Optional[BookingStatusChange] = Body(None),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(
            booking_service.refund_booking, booking_id, payload.reason if payload else None
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/payment-intent", response_model=PaymentIntentResponse)
async def create_payment_intent(
    booking_id: str = booking_id_path(),
    payment_service: PaymentIntentService = Depends(get_payment_intent_service),
) -> PaymentIntentResponse:
    """Create the Stripe PaymentIntent a client uses to pay a CONFIRMED booking."""
    try:
        info = await asyncio.to_thread(payment_service.create_for_booking, booking_id)
        return PaymentIntentResponse(
            payment_intent_id=info.payment_intent_id,
            client_secret=info.client_secret,
            amount=info.amount,
            currency=info.currency,
        )
    except DomainException as e:
        handle_domain_exception(e)


__all__ = ["router"]
