"""Celery tasks for event management.

This module contains asynchronous tasks for:
- Promoting waitlisted bookings when capacity frees up
- Archiving events that are over
"""

from uuid import UUID

import structlog
from celery import shared_task

from .models import Event
from .service.archive_service import archive_past_events
from .service.ledger import UnitRef
from .service.registration_service import registration_service

logger = structlog.get_logger(__name__)


@shared_task(name="events.promote_waitlist")
def promote_waitlist_task(event_id: str, cohort_id: str | None = None) -> list[str]:
    """Promote waitlisted bookings of one inventory unit.

    Returns:
        The ids of the promoted bookings.
    """
    unit = UnitRef(event_id=UUID(event_id), cohort_id=UUID(cohort_id) if cohort_id else None)
    promoted = registration_service.promote_waitlist(unit)
    return [str(booking.pk) for booking in promoted]


@shared_task(name="events.sweep_waitlists")
def sweep_waitlists() -> int:
    """Periodic pass over every published unit that has someone waiting.

    Catches capacity freed by paths that do not emit a cancellation, such as a capacity
    increase by the organizer.
    """
    total = 0
    events = Event.objects.published().filter(bookings__status="waitlisted").distinct()
    for event in events.prefetch_related("cohorts"):
        for unit in UnitRef.units_of(event):
            total += len(registration_service.promote_waitlist(unit))
    logger.info("waitlist_sweep_completed", promoted=total)
    return total


@shared_task(name="events.archive_past_events")
def archive_past_events_task() -> int:
    """Archive events that ended more than ARCHIVE_BUFFER_HOURS ago."""
    return len(archive_past_events())
