# backend/tutorspool/models/__init__.py
"""
SQLAlchemy models for the TutorsPool booking core.

Importing this package registers every table on ``Base.metadata``.
"""

from .availability import AvailabilityBlock
from .booking import TERMINAL_STATUSES, Booking, BookingStatus, SessionType
from .webhook_event import WebhookEvent, WebhookEventStatus

__all__ = [
    "AvailabilityBlock",
    "Booking",
    "BookingStatus",
    "SessionType",
    "TERMINAL_STATUSES",
    "WebhookEvent",
    "WebhookEventStatus",
]
