import typing as t
from datetime import datetime
from uuid import UUID

from ninja import ModelSchema, Schema
from pydantic import EmailStr, Field, StringConstraints

from common.schema import OneToOneFiftyString, StrippedString
from events.models import Booking
from events.service.check_in_service import CheckInOutcome, CheckInResult
from events.service.ledger import UnitSnapshot
from events.service.registration_service import AttendeeInfo

PhoneString = t.Annotated[str, StringConstraints(max_length=32, strip_whitespace=True)]


class RegistrationCreateSchema(Schema):
    name: OneToOneFiftyString
    email: EmailStr
    phone: PhoneString = ""
    quantity: int = Field(1, ge=1, le=50)
    cohort_id: UUID | None = None
    source: Booking.Source = Booking.Source.APP
    idempotency_key: t.Annotated[str, StringConstraints(min_length=1, max_length=64)] | None = None

    def attendee(self) -> AttendeeInfo:
        return AttendeeInfo(name=self.name, email=str(self.email), phone=self.phone, source=self.source)


class BookingSchema(ModelSchema):
    event_id: UUID
    cohort_id: UUID | None = None
    available_tickets: int

    class Meta:
        model = Booking
        fields = [
            "id",
            "reference",
            "status",
            "quantity",
            "attendee_name",
            "attendee_email",
            "checked_in",
            "checked_in_at",
            "created_at",
        ]

    @staticmethod
    def resolve_available_tickets(obj: Booking) -> int:
        """Tickets left in the unit the booking draws from."""
        unit = obj.cohort if obj.cohort_id else obj.event
        unit.refresh_from_db(fields=["capacity", "reserved"])
        return unit.available


class MyBookingSchema(BookingSchema):
    """A booking as listed to its holder."""

    event_name: str
    event_start: datetime | None = None

    @staticmethod
    def resolve_event_name(obj: Booking) -> str:
        return obj.event.name

    @staticmethod
    def resolve_event_start(obj: Booking) -> datetime | None:
        return obj.event.start


class TicketSchema(Schema):
    booking_id: UUID
    reference: str
    qr_payload: str


class CheckInSchema(Schema):
    code: t.Annotated[str, StringConstraints(min_length=1, max_length=2048)]
    method: Booking.CheckInMethod = Booking.CheckInMethod.QR


class CheckInResponseSchema(Schema):
    outcome: CheckInOutcome
    booking_id: UUID | None = None
    reference: str | None = None
    attendee_name: str | None = None
    quantity: int | None = None
    checked_in_at: datetime | None = None
    checked_in_by_id: int | None = None
    reason: str | None = None

    @classmethod
    def from_result(cls, result: CheckInResult) -> "CheckInResponseSchema":
        booking = result.booking
        return cls(
            outcome=result.outcome,
            booking_id=booking.pk if booking else None,
            reference=booking.reference if booking else None,
            attendee_name=booking.attendee_name if booking else None,
            quantity=booking.quantity if booking else None,
            checked_in_at=result.checked_in_at,
            checked_in_by_id=result.checked_in_by_id,
            reason=result.reason,
        )


class UnitStatsSchema(Schema):
    cohort_id: UUID | None = None
    name: StrippedString
    capacity: int
    reserved: int
    checked_in: int
    available: int

    @classmethod
    def from_snapshot(cls, name: str, snapshot: UnitSnapshot) -> "UnitStatsSchema":
        return cls(
            cohort_id=snapshot.unit.cohort_id,
            name=name,
            capacity=snapshot.capacity,
            reserved=snapshot.reserved,
            checked_in=snapshot.checked_in,
            available=snapshot.available,
        )


class EventStatsSchema(Schema):
    event_id: UUID
    event: UnitStatsSchema
    cohorts: list[UnitStatsSchema]
    waitlisted: int


class PromotionResultSchema(Schema):
    promoted: list[UUID]

