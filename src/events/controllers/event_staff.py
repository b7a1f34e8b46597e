import typing as t
from uuid import UUID

from django.db.models import QuerySet, Sum
from ninja import Query
from ninja_extra import api_controller, route
from ninja_extra.pagination import PageNumberPaginationExtra, PaginatedResponseSchema, paginate
from ninja_extra.searching import Searching, searching
from ninja_jwt.authentication import JWTAuth

from common.throttling import CheckInThrottle, UserDefaultThrottle, WriteThrottle
from events import filters, models, schema
from events.controllers.permissions import IsEventStaff
from events.controllers.user_aware_controller import UserAwareController
from events.service.check_in_service import CheckInOutcome, check_in_service
from events.service.ledger import UnitRef, ledger
from events.service.registration_service import registration_service


@api_controller(
    "/events/{event_id}",
    auth=JWTAuth(),
    permissions=[IsEventStaff()],
    tags=["Event Staff"],
    throttle=UserDefaultThrottle(),
)
class EventStaffController(UserAwareController):
    """Door and dashboard endpoints for an event's organizer and check-in staff."""

    def get_one(self, event_id: UUID) -> models.Event:
        """Fetch the event and check object permissions."""
        return t.cast(models.Event, self.get_object_or_exception(models.Event.objects.all(), pk=event_id))

    @route.post(
        "/check-in",
        url_name="check_in",
        response={
            200: schema.CheckInResponseSchema,
            400: schema.CheckInResponseSchema,
            404: schema.CheckInResponseSchema,
        },
        throttle=CheckInThrottle(),
    )
    def check_in(self, event_id: UUID, payload: schema.CheckInSchema) -> tuple[int, schema.CheckInResponseSchema]:
        """Check an attendee in from a scanned QR payload or a typed booking id/reference.

        Returns 200 with `success` the first time and `already_checked_in` on every later scan,
        so retrying after a timeout is safe. Unknown bookings give 404; any other rejection
        (wrong event, cancelled, waitlisted, unreadable code) gives 400 with the `outcome`.
        """
        event = self.get_one(event_id)
        result = check_in_service.check_in_code(payload.code, event.pk, actor=self.user(), method=payload.method)
        if result.admitted:
            status = 200
        elif result.outcome == CheckInOutcome.BOOKING_NOT_FOUND:
            status = 404
        else:
            status = 400
        return status, schema.CheckInResponseSchema.from_result(result)

    @route.get("/stats", url_name="event_stats", response={200: schema.EventStatsSchema})
    def event_stats(self, event_id: UUID) -> schema.EventStatsSchema:
        """Live capacity and attendance counters for the event and each of its cohorts."""
        event = self.get_one(event_id)
        waitlisted = models.Booking.objects.filter(event=event).waitlisted().aggregate(total=Sum("quantity"))
        return schema.EventStatsSchema(
            event_id=event.pk,
            event=schema.UnitStatsSchema.from_snapshot(event.name, ledger.snapshot_of(event)),
            cohorts=[
                schema.UnitStatsSchema.from_snapshot(cohort.name, ledger.snapshot_of(cohort))
                for cohort in event.cohorts.all()
            ],
            waitlisted=waitlisted["total"] or 0,
        )

    @route.get(
        "/bookings",
        url_name="list_bookings",
        response=PaginatedResponseSchema[schema.BookingSchema],
    )
    @paginate(PageNumberPaginationExtra, page_size=50)
    @searching(Searching, search_fields=["attendee_name", "attendee_email", "reference"])
    def list_bookings(
        self,
        event_id: UUID,
        params: filters.BookingFilterSchema = Query(...),  # type: ignore[type-arg]
    ) -> QuerySet[models.Booking]:
        """List the attendees of an event.

        Supports filtering by status, checked-in state and cohort, and searching by name,
        email or booking reference.
        """
        event = self.get_one(event_id)
        qs = models.Booking.objects.filter(event=event).select_related("event", "cohort").order_by("created_at")
        return params.filter(qs)

    @route.post(
        "/waitlist/promote",
        url_name="promote_waitlist",
        response={200: schema.PromotionResultSchema},
        throttle=WriteThrottle(),
    )
    def promote_waitlist(self, event_id: UUID) -> schema.PromotionResultSchema:
        """Run a waitlist sweep now, e.g. after raising the capacity."""
        event = self.get_one(event_id)
        promoted = [
            booking.pk
            for unit in UnitRef.units_of(event)
            for booking in registration_service.promote_waitlist(unit)
        ]
        return schema.PromotionResultSchema(promoted=promoted)
