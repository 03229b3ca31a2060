# backend/tutorspool/core/exceptions.py
"""
Domain-specific exceptions for the TutorsPool booking core.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.

Business-rule rejections (outside working hours, conflicting booking, ...)
are NOT exceptions; they are returned as typed results. Everything here is
either a programming/race error or an integration failure.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class BookingConflictException(ConflictException):
    """Raised by the persistence layer when an insert would overlap a committed booking."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing booking",
            code="BOOKING_CONFLICT",
            details=details or {},
        )


class IllegalTransitionException(ConflictException):
    """Raised when a booking status change is not an edge of the lifecycle graph."""

    def __init__(self, from_status: str, to_status: str, booking_id: Optional[str] = None):
        self.from_status = from_status
        self.to_status = to_status
        self.booking_id = booking_id
        super().__init__(
            message=f"Illegal booking transition {from_status} -> {to_status}",
            code="ILLEGAL_TRANSITION",
            details={
                "booking_id": booking_id,
                "from_status": from_status,
                "to_status": to_status,
            },
        )


class ReconciliationError(ServiceException):
    """
    Payment gateway and application state are out of sync.

    Never swallowed: the webhook caller must see the failure so the gateway
    redelivers and an operator is alerted.
    """


class MissingBookingReferenceException(ReconciliationError):
    """Raised when a payment event carries no booking id in its metadata."""

    def __init__(self, gateway_event_id: Optional[str], payment_intent_id: Optional[str]):
        super().__init__(
            message="Payment event has no booking reference",
            code="MISSING_BOOKING_REFERENCE",
            details={
                "gateway_event_id": gateway_event_id,
                "payment_intent_id": payment_intent_id,
            },
        )


class BookingNotFoundException(ReconciliationError):
    """Raised when a payment event references a booking that does not exist."""

    def __init__(self, booking_id: str, gateway_event_id: Optional[str] = None):
        super().__init__(
            message=f"Booking {booking_id} not found",
            code="BOOKING_NOT_FOUND",
            details={"booking_id": booking_id, "gateway_event_id": gateway_event_id},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
