# src/events/signals.py

import typing as t

import structlog
from django.dispatch import Signal, receiver

logger = structlog.get_logger(__name__)

# Published after every committed ledger mutation.
# Expected kwargs:
#   - snapshot: events.service.ledger.UnitSnapshot
unit_counters_changed = Signal()

# Published after a cancellation commits, for the notification collaborator.
# Expected kwargs:
#   - booking: Booking
#   - event_id: UUID
#   - confirmed_tickets: int, tickets still confirmed for the event
#   - released: int, tickets handed back to the ledger
booking_cancelled = Signal()


@receiver(booking_cancelled)
def trigger_waitlist_promotion(sender: t.Any, booking: t.Any, released: int, **kwargs: t.Any) -> None:
    """Promote waitlisted bookings as soon as capacity frees up."""
    from events.tasks import promote_waitlist_task

    if not released:
        return
    cohort_id = str(booking.cohort_id) if booking.cohort_id else None
    logger.info(
        "waitlist_promotion_scheduled",
        event_id=str(booking.event_id),
        cohort_id=cohort_id,
        released=released,
    )
    promote_waitlist_task.delay(str(booking.event_id), cohort_id)
