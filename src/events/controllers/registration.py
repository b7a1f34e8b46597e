from uuid import UUID

from ninja_extra import api_controller, route

from common.authentication import OptionalAuth
from common.schema import ResponseMessage
from common.throttling import RegistrationThrottle
from events import models, schema
from events.controllers.user_aware_controller import UserAwareController
from events.service.registration_service import registration_service


@api_controller("/events", auth=OptionalAuth(), tags=["Registration"], throttle=RegistrationThrottle())
class RegistrationController(UserAwareController):
    @route.post(
        "/{uuid:event_id}/register",
        url_name="register_for_event",
        response={201: schema.BookingSchema, 400: ResponseMessage, 404: ResponseMessage, 409: ResponseMessage},
    )
    def register_for_event(self, event_id: UUID, payload: schema.RegistrationCreateSchema) -> tuple[int, models.Booking]:
        """Register for an event, or for one of its cohorts.

        The booking comes back `confirmed` when tickets were available and `waitlisted` otherwise;
        waitlisted bookings are promoted automatically when capacity frees up. Send the same
        `idempotency_key` when retrying after a network error to get the original booking back.
        Works anonymously; when authenticated the booking is linked to your account.
        """
        user = self.maybe_user()
        booking = registration_service.register(
            event_id=event_id,
            attendee=payload.attendee(),
            quantity=payload.quantity,
            cohort_id=payload.cohort_id,
            user=None if user.is_anonymous else user,
            idempotency_key=payload.idempotency_key,
        )
        return 201, booking
