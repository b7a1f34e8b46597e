from .bookings import BookingController
from .event_staff import EventStaffController
from .registration import RegistrationController

EVENT_CONTROLLERS: list[type] = [
    RegistrationController,
    BookingController,
    EventStaffController,
]

__all__ = [
    "BookingController",
    "EventStaffController",
    "RegistrationController",
    "EVENT_CONTROLLERS",
]
