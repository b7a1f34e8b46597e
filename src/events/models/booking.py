import secrets
import typing as t

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q

from common.models import TimeStampedModel

from .event import Cohort, Event


def generate_booking_reference() -> str:
    """Human-readable ticket code, printed under the QR code for manual entry."""
    return f"TKT-{secrets.token_hex(5).upper()}"


class BookingQuerySet(models.QuerySet["Booking"]):
    def live(self) -> t.Self:
        """Bookings that hold a ticket or a waitlist spot."""
        return self.filter(status__in=Booking.LIVE_STATUSES)

    def confirmed(self) -> t.Self:
        return self.filter(status=Booking.BookingStatus.CONFIRMED)

    def waitlisted(self) -> t.Self:
        """Waitlisted bookings in promotion order (first come, first served)."""
        return self.filter(status=Booking.BookingStatus.WAITLISTED).order_by("created_at")

    def for_unit(self, event_id: t.Any, cohort_id: t.Any | None) -> t.Self:
        """Bookings drawing from the given inventory unit."""
        if cohort_id is None:
            return self.filter(event_id=event_id, cohort__isnull=True)
        return self.filter(event_id=event_id, cohort_id=cohort_id)


class Booking(TimeStampedModel):
    """One attendee's registration against an inventory unit."""

    class BookingStatus(models.TextChoices):
        PENDING = "pending"
        CONFIRMED = "confirmed"
        CANCELLED = "cancelled"
        WAITLISTED = "waitlisted"

    class CheckInMethod(models.TextChoices):
        QR = "qr", "QR code"
        MANUAL = "manual", "Manual entry"

    class Source(models.TextChoices):
        APP = "app"
        WEB = "web"
        DOOR = "door"

    ALLOWED_TRANSITIONS: t.ClassVar[dict[str, frozenset[str]]] = {
        BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.WAITLISTED}),
        BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED}),
        BookingStatus.WAITLISTED: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
        BookingStatus.CANCELLED: frozenset(),
    }
    LIVE_STATUSES: t.ClassVar[tuple[str, ...]] = (BookingStatus.CONFIRMED, BookingStatus.WAITLISTED)

    event = models.ForeignKey(Event, on_delete=models.CASCADE, related_name="bookings")
    cohort = models.ForeignKey(Cohort, on_delete=models.CASCADE, related_name="bookings", null=True, blank=True)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, related_name="bookings", null=True, blank=True
    )
    reference = models.CharField(max_length=20, unique=True, default=generate_booking_reference, editable=False)
    quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    status = models.CharField(
        choices=BookingStatus.choices, max_length=20, default=BookingStatus.PENDING, db_index=True
    )
    attendee_name = models.CharField(max_length=255)
    attendee_email = models.EmailField(db_index=True)
    attendee_phone = models.CharField(max_length=32, blank=True, default="")
    source = models.CharField(choices=Source.choices, max_length=10, default=Source.APP)
    idempotency_key = models.CharField(max_length=64, null=True, blank=True)
    qr_payload = models.TextField(blank=True, default="", editable=False)

    checked_in = models.BooleanField(default=False, db_index=True)
    checked_in_at = models.DateTimeField(null=True, blank=True)
    checked_in_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="checked_in_bookings",
        null=True,
        blank=True,
    )
    check_in_method = models.CharField(choices=CheckInMethod.choices, max_length=10, null=True, blank=True)

    cancelled_at = models.DateTimeField(null=True, blank=True)
    promoted_at = models.DateTimeField(null=True, blank=True)

    objects = BookingQuerySet.as_manager()

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["event", "status", "created_at"], name="booking_event_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["event", "idempotency_key"],
                condition=Q(idempotency_key__isnull=False),
                name="unique_booking_idempotency_key",
            ),
            models.UniqueConstraint(
                fields=["event", "attendee_email"],
                condition=Q(status__in=["confirmed", "waitlisted"]),
                name="unique_live_booking_per_email",
            ),
            models.CheckConstraint(
                condition=Q(checked_in=False) | Q(checked_in_at__isnull=False),
                name="checked_in_requires_timestamp",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.reference} ({self.status})"

    @classmethod
    def can_transition(cls, current: str, new: str) -> bool:
        return new in cls.ALLOWED_TRANSITIONS[current]

    @classmethod
    def assert_transition(cls, current: str, new: str) -> None:
        """Raise if ``current -> new`` is not an edge of the status graph."""
        from events.exceptions import InvalidStatusTransitionError

        if not cls.can_transition(current, new):
            raise InvalidStatusTransitionError(current, new)

    def transition_to(self, new: str) -> None:
        """Move the in-memory status along the status graph."""
        self.assert_transition(self.status, new)
        self.status = new
