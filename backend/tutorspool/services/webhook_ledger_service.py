"""Service for recording inbound payment gateway webhooks."""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.clock import Clock, system_clock
from ..core.exceptions import RepositoryException
from ..models.webhook_event import WebhookEvent, WebhookEventStatus
from ..repositories import RepositoryFactory
from .base import BaseService


class WebhookLedgerService(BaseService):
    """
    Ledger of gateway events keyed by ``(source, event_id)``.

    A redelivered event finds its existing row and bumps the retry counter
    instead of inserting a duplicate.
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None) -> None:
        super().__init__(db)
        self.clock = clock or system_clock
        self.repository = RepositoryFactory.create_webhook_event_repository(db)

    def _bump_retry(self, existing: WebhookEvent) -> WebhookEvent:
        existing.retry_count = (existing.retry_count or 0) + 1
        existing.last_retry_at = self.clock.now()
        self.repository.flush()
        return existing

    @BaseService.measure_operation("webhook_ledger.log_received")
    def log_received(
        self,
        *,
        source: str,
        event_type: str,
        payload: dict[str, Any],
        event_id: str | None = None,
    ) -> WebhookEvent:
        """
        Log a received webhook before processing.

        Handles redeliveries by updating retry tracking when a duplicate event_id is received.
        """
        if event_id:
            existing = self.repository.find_by_source_and_event_id(source, event_id)
            if existing is not None:
                return self._bump_retry(existing)

        try:
            return self.repository.create(
                source=source,
                event_type=event_type or "unknown",
                event_id=event_id,
                payload=payload,
                status=WebhookEventStatus.RECEIVED,
                received_at=self.clock.now(),
                retry_count=0,
            )
        except RepositoryException as exc:
            # Race-safe fallback: DB uniqueness won in another worker.
            if event_id and isinstance(exc.__cause__, IntegrityError):
                existing = self.repository.find_by_source_and_event_id(source, event_id)
                if existing is not None:
                    return self._bump_retry(existing)
            raise

    @staticmethod
    def is_processed(event: WebhookEvent) -> bool:
        return event.status == WebhookEventStatus.PROCESSED

    @BaseService.measure_operation("webhook_ledger.mark_processing")
    def mark_processing(self, event: WebhookEvent) -> WebhookEvent:
        event.status = WebhookEventStatus.PROCESSING
        event.processing_error = None
        event.processed_at = None
        self.repository.flush()
        return event

    @BaseService.measure_operation("webhook_ledger.mark_processed")
    def mark_processed(
        self,
        event: WebhookEvent,
        *,
        related_entity_id: str | None = None,
    ) -> WebhookEvent:
        """Mark webhook as successfully processed."""
        event.status = WebhookEventStatus.PROCESSED
        event.processed_at = self.clock.now()
        event.processing_error = None
        if related_entity_id:
            event.related_entity_id = related_entity_id
        self.repository.flush()
        return event

    @BaseService.measure_operation("webhook_ledger.mark_failed")
    def mark_failed(
        self,
        event: WebhookEvent,
        *,
        error: str,
        related_entity_id: str | None = None,
    ) -> WebhookEvent:
        """Mark webhook as failed; a redelivery may still process it."""
        event.status = WebhookEventStatus.FAILED
        event.processing_error = error
        event.processed_at = self.clock.now()
        if related_entity_id:
            event.related_entity_id = related_entity_id
        self.repository.flush()
        return event
