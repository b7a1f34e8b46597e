from datetime import timedelta

import structlog
from django.conf import settings
from django.utils import timezone

from events.models import Event

logger = structlog.get_logger(__name__)


def archive_past_events(buffer_hours: int | None = None, dry_run: bool = False) -> list[Event]:
    """Archive published events that ended more than ``buffer_hours`` ago.

    Archived events stop accepting registrations; their bookings and counters are kept.
    """
    if buffer_hours is None:
        buffer_hours = settings.ARCHIVE_BUFFER_HOURS
    cutoff = timezone.now() - timedelta(hours=buffer_hours)
    events = list(Event.objects.archivable(cutoff))

    if dry_run:
        logger.info("archive_dry_run", cutoff=cutoff.isoformat(), candidates=len(events))
        return events

    for event in events:
        event.archive()
        logger.info("event_archived", event_id=str(event.pk), ended_at=event.end.isoformat() if event.end else None)
    return events
