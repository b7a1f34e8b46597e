import typing as t
from uuid import UUID

from django.db.models import QuerySet
from django.http import HttpResponse
from ninja import Query
from ninja.errors import HttpError
from ninja_extra import api_controller, route
from ninja_extra.pagination import PageNumberPaginationExtra, PaginatedResponseSchema, paginate
from ninja_jwt.authentication import JWTAuth

from common.throttling import UserDefaultThrottle, WriteThrottle
from events import filters, models, schema
from events.controllers.permissions import CanManageBooking
from events.controllers.user_aware_controller import UserAwareController
from events.service import qr_codec
from events.service.registration_service import registration_service


@api_controller(
    "/bookings",
    auth=JWTAuth(),
    permissions=[CanManageBooking()],
    tags=["Bookings"],
    throttle=UserDefaultThrottle(),
)
class BookingController(UserAwareController):
    """Endpoints for the booking holder (and the event's staff)."""

    def get_one(self, booking_id: UUID) -> models.Booking:
        """Fetch the booking and check object permissions."""
        return t.cast(
            models.Booking,
            self.get_object_or_exception(models.Booking.objects.select_related("event"), pk=booking_id),
        )

    def get_ticket_booking(self, booking_id: UUID) -> models.Booking:
        booking = self.get_one(booking_id)
        if booking.status != models.Booking.BookingStatus.CONFIRMED:
            raise HttpError(400, "Only confirmed bookings have a ticket.")
        return booking

    @route.get(
        "/",
        url_name="list_my_bookings",
        response=PaginatedResponseSchema[schema.MyBookingSchema],
    )
    @paginate(PageNumberPaginationExtra, page_size=20)
    def list_my_bookings(
        self,
        params: filters.MyBookingFilterSchema = Query(...),  # type: ignore[type-arg]
    ) -> QuerySet[models.Booking]:
        """List the bookings made by the current user, newest first."""
        qs = models.Booking.objects.filter(user=self.user()).select_related("event", "cohort")
        return params.filter(qs).order_by("-created_at")

    @route.post(
        "/{uuid:booking_id}/cancel",
        url_name="cancel_booking",
        response={200: schema.BookingSchema},
        throttle=WriteThrottle(),
    )
    def cancel_booking(self, booking_id: UUID) -> models.Booking:
        """Cancel a booking.

        Confirmed tickets go back to the pool and the first waitlisted bookings that fit are
        promoted. Cancelling twice is harmless.
        """
        booking = self.get_one(booking_id)
        return registration_service.cancel(booking.pk)

    @route.get("/{uuid:booking_id}/ticket", url_name="get_ticket", response={200: schema.TicketSchema})
    def get_ticket(self, booking_id: UUID) -> schema.TicketSchema:
        """Get the payload to encode in the ticket's QR code, plus the reference for manual entry."""
        booking = self.get_ticket_booking(booking_id)
        return schema.TicketSchema(
            booking_id=booking.pk,
            reference=booking.reference,
            qr_payload=booking.qr_payload or qr_codec.encode(booking),
        )

    @route.get("/{uuid:booking_id}/ticket.png", url_name="get_ticket_qr", response={200: None})
    def get_ticket_qr(self, booking_id: UUID) -> HttpResponse:
        """Download the ticket's QR code as a PNG image."""
        booking = self.get_ticket_booking(booking_id)
        response = HttpResponse(qr_codec.render_png(booking), content_type="image/png")
        response["Content-Disposition"] = f'inline; filename="{booking.reference}.png"'
        return response
