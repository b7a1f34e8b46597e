from .booking import Booking, BookingQuerySet, generate_booking_reference
from .event import Cohort, Event, EventQuerySet
from .inventory import COUNTER_FIELDS, InventoryUnit

__all__ = [
    "COUNTER_FIELDS",
    "Booking",
    "BookingQuerySet",
    "Cohort",
    "Event",
    "EventQuerySet",
    "InventoryUnit",
    "generate_booking_reference",
]
