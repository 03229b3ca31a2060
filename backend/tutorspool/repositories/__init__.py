"""Data access layer. Repositories flush; services own commits."""

from .availability_repository import AvailabilityRepository
from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .factory import RepositoryFactory
from .webhook_event_repository import WebhookEventRepository

__all__ = [
    "AvailabilityRepository",
    "BaseRepository",
    "BookingRepository",
    "RepositoryFactory",
    "WebhookEventRepository",
]
