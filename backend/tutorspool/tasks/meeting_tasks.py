"""Celery tasks for meeting link provisioning."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, ParamSpec, Protocol, TypeVar, cast

from celery.result import AsyncResult

from tutorspool.core.config import settings
from tutorspool.database import get_db_session
from tutorspool.integrations.meeting_client import MeetingProviderError
from tutorspool.repositories import RepositoryFactory
from tutorspool.services.meeting_provisioner import MeetingProvisioner
from tutorspool.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R", covariant=True)

PROVISION_TASK_NAME = "tutorspool.tasks.meeting_tasks.provision_meeting_link"


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: "Callable[..., AsyncResult[Any]]"
    apply_async: "Callable[..., AsyncResult[Any]]"


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )


@typed_task(
    bind=True,
    name=PROVISION_TASK_NAME,
    max_retries=settings.meeting_provisioning_max_retries,
    autoretry_for=(MeetingProviderError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
)
def provision_meeting_link(self: Any, booking_id: str) -> Dict[str, Any]:
    """
    Provision the meeting link of a PAID online booking.

    Idempotent: a booking that already has a link (or is no longer PAID) is
    skipped. Provider failures are recorded on the booking and then raised
    so Celery retries with exponential backoff.
    """
    logger.info("Provisioning meeting link for booking %s (attempt %s)", booking_id, self.request.retries + 1)

    with get_db_session() as db:
        provisioner = MeetingProvisioner(db)
        result = provisioner.provision_for_booking(booking_id, raise_on_error=True)

    if result.skipped:
        return {"status": "skipped", "booking_id": booking_id, "meeting_link": result.join_url}
    return {"status": "created", "booking_id": booking_id, "meeting_link": result.join_url}


@typed_task(name="tutorspool.tasks.meeting_tasks.retry_missing_meeting_links")
def retry_missing_meeting_links(limit: int = 100) -> Dict[str, int]:
    """Re-queue provisioning for PAID online bookings that still have no link."""
    with get_db_session() as db:
        booking_ids = [
            booking.id
            for booking in RepositoryFactory.create_booking_repository(db).get_paid_online_without_link(limit)
        ]

    for booking_id in booking_ids:
        enqueue_meeting_provisioning(booking_id)

    if booking_ids:
        logger.info("Re-queued meeting provisioning for %d bookings", len(booking_ids))
    return {"queued": len(booking_ids)}


def enqueue_meeting_provisioning(booking_id: str) -> Any:
    """Hand one booking to the provisioning worker."""
    task = celery_app.tasks[PROVISION_TASK_NAME]
    return task.apply_async(args=(booking_id,))
