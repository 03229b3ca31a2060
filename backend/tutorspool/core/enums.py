"""
Core enums for the TutorsPool booking core.

Values are the stable codes surfaced to API callers; never rename them.
"""

from enum import Enum


class RejectionReason(str, Enum):
    """Why a booking request was not accepted."""

    NO_AVAILABILITY_CONFIGURED = "NO_AVAILABILITY_CONFIGURED"
    OUTSIDE_WORKING_HOURS = "OUTSIDE_WORKING_HOURS"
    CONFLICTING_BOOKING = "CONFLICTING_BOOKING"
    SAME_PERSON = "SAME_PERSON"
    START_IN_PAST = "START_IN_PAST"
    INVALID_DURATION = "INVALID_DURATION"


REJECTION_MESSAGES: dict[RejectionReason, str] = {
    RejectionReason.NO_AVAILABILITY_CONFIGURED: "Tutor has no availability set",
    RejectionReason.OUTSIDE_WORKING_HOURS: "Requested time is outside tutor's working hours",
    RejectionReason.CONFLICTING_BOOKING: "Time slot conflicts with an existing booking",
    RejectionReason.SAME_PERSON: "Student and tutor cannot be the same person",
    RejectionReason.START_IN_PAST: "Booking time must be in the future",
    RejectionReason.INVALID_DURATION: "Session duration must be a positive number of minutes",
}


class ConflictScope(str, Enum):
    """Which existing bookings are considered when checking for overlaps."""

    PAIR = "pair"  # same student and tutor only
    TUTOR = "tutor"  # every booking of the tutor


class PaymentEventType(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class ReconciliationOutcome(str, Enum):
    PAID_MEETING_CREATED = "PAID_MEETING_CREATED"
    PAID_MEETING_FAILED = "PAID_MEETING_FAILED"
    PAID_MEETING_QUEUED = "PAID_MEETING_QUEUED"
    PAID_NO_MEETING_NEEDED = "PAID_NO_MEETING_NEEDED"
    PAYMENT_FAILED_RECORDED = "PAYMENT_FAILED_RECORDED"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    IGNORED_STALE_EVENT = "IGNORED_STALE_EVENT"
