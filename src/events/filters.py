# src/events/filters.py

from uuid import UUID

from django.db.models import Q
from ninja import Field, FilterSchema

from events.models import Booking


class BookingFilterSchema(FilterSchema):
    status: Booking.BookingStatus | None = None
    checked_in: bool | None = None
    cohort: UUID | None = Field(None, q="cohort_id")  # type: ignore[call-overload]
    event_level_only: bool | None = None

    def filter_event_level_only(self, event_level_only: bool | None) -> Q:
        """Helper to find bookings drawing from the event pool, not a cohort."""
        if event_level_only:
            return Q(cohort__isnull=True)
        return Q()


class MyBookingFilterSchema(FilterSchema):
    status: Booking.BookingStatus | None = None
    event: UUID | None = Field(None, q="event_id")  # type: ignore[call-overload]
    live_only: bool | None = None

    def filter_live_only(self, live_only: bool | None) -> Q:
        """Hide cancelled bookings."""
        if live_only:
            return ~Q(status=Booking.BookingStatus.CANCELLED)
        return Q()
