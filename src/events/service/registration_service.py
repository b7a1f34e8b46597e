"""Registration and cancellation against an inventory unit.

A booking is only ever persisted as ``confirmed`` in the same transaction in which its
reservation succeeded; when the ledger reports the unit full, the booking is waitlisted
instead and the ledger is left untouched.
"""

import typing as t
from dataclasses import dataclass
from uuid import UUID

import structlog
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, OperationalError, transaction
from django.db.models import Sum
from django.utils import timezone
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_random_exponential

from events.exceptions import DuplicateRegistrationError, InventoryUnitNotFoundError, RegistrationClosedError
from events.models import Booking, Cohort, Event
from events.service import qr_codec
from events.service.ledger import CapacityLedger, UnitRef, ledger
from events.signals import booking_cancelled

if t.TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

logger = structlog.get_logger(__name__)

# A cancel can race with a promotion of the same booking; re-read at most this many times.
MAX_CANCEL_ATTEMPTS = 3


@dataclass(frozen=True)
class AttendeeInfo:
    name: str
    email: str
    phone: str = ""
    source: str = Booking.Source.APP


class RegistrationService:
    def __init__(self, capacity_ledger: CapacityLedger | None = None) -> None:
        """Initialize the registration service."""
        self.ledger = capacity_ledger or ledger

    def register(
        self,
        *,
        event_id: UUID,
        attendee: AttendeeInfo,
        quantity: int = 1,
        cohort_id: UUID | None = None,
        user: "AbstractBaseUser | None" = None,
        idempotency_key: str | None = None,
    ) -> Booking:
        """Create a confirmed booking, or a waitlisted one when the unit is full.

        Retrying with the same ``idempotency_key`` returns the booking created by the first
        attempt and never reserves a second time.

        Raises:
            InventoryUnitNotFoundError: the event or cohort does not exist.
            RegistrationClosedError: the event is not published.
            DuplicateRegistrationError: the attendee already holds a live booking.
        """
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        event = Event.objects.filter(pk=event_id).first()
        if event is None:
            raise InventoryUnitNotFoundError(f"Event {event_id} does not exist.")

        if idempotency_key and (existing := self._find_retry(event_id, idempotency_key)):
            logger.info("registration_retry_deduplicated", booking_id=str(existing.pk), event_id=str(event_id))
            return existing

        if not event.accepts_registrations:
            raise RegistrationClosedError(f"Event {event_id} is not accepting registrations.")
        if cohort_id is not None and not Cohort.objects.filter(pk=cohort_id, event_id=event_id).exists():
            raise InventoryUnitNotFoundError(f"Cohort {cohort_id} does not belong to event {event_id}.")

        email = attendee.email.strip().lower()
        if self._has_live_booking(event_id, email):
            raise DuplicateRegistrationError(f"{email} is already registered for this event.")

        try:
            booking = self._reserve_and_persist(
                unit=UnitRef(event_id=event_id, cohort_id=cohort_id),
                quantity=quantity,
                attendee=attendee,
                email=email,
                user=user,
                idempotency_key=idempotency_key,
            )
        except (IntegrityError, ValidationError):
            # A concurrent attempt won the unique constraint; the reservation was rolled back.
            if idempotency_key and (existing := self._find_retry(event_id, idempotency_key)):
                return existing
            if self._has_live_booking(event_id, email):
                raise DuplicateRegistrationError(f"{email} is already registered for this event.") from None
            raise

        logger.info(
            "booking_registered",
            booking_id=str(booking.pk),
            event_id=str(event_id),
            cohort_id=str(cohort_id) if cohort_id else None,
            quantity=quantity,
            status=booking.status,
        )
        return booking

    @retry(
        retry=retry_if_exception_type(OperationalError),
        stop=stop_after_attempt(settings.LEDGER_RETRY_ATTEMPTS),
        wait=wait_random_exponential(multiplier=0.05, max=1),
        reraise=True,
    )
    def _reserve_and_persist(
        self,
        *,
        unit: UnitRef,
        quantity: int,
        attendee: AttendeeInfo,
        email: str,
        user: "AbstractBaseUser | None",
        idempotency_key: str | None,
    ) -> Booking:
        booking = Booking(
            event_id=unit.event_id,
            cohort_id=unit.cohort_id,
            user=user,
            quantity=quantity,
            attendee_name=attendee.name,
            attendee_email=email,
            attendee_phone=attendee.phone,
            source=attendee.source,
            idempotency_key=idempotency_key,
        )
        with transaction.atomic():
            result = self.ledger.reserve(unit, quantity)
            if result.reserved:
                booking.transition_to(Booking.BookingStatus.CONFIRMED)
                booking.qr_payload = qr_codec.encode(booking)
            else:
                booking.transition_to(Booking.BookingStatus.WAITLISTED)
            booking.save()
        return booking

    def cancel(self, booking_id: UUID) -> Booking:
        """Cancel a booking, handing a confirmed booking's tickets back to the ledger.

        Cancelling an already cancelled booking is a no-op.
        """
        for _attempt in range(MAX_CANCEL_ATTEMPTS):
            booking = Booking.objects.get(pk=booking_id)
            previous = booking.status
            if previous == Booking.BookingStatus.CANCELLED:
                logger.info("booking_cancel_noop", booking_id=str(booking_id))
                return booking
            Booking.assert_transition(previous, Booking.BookingStatus.CANCELLED)

            with transaction.atomic():
                now = timezone.now()
                flipped = Booking.objects.filter(pk=booking_id, status=previous).update(
                    status=Booking.BookingStatus.CANCELLED, cancelled_at=now, updated_at=now
                )
                if not flipped:
                    continue
                released = booking.quantity if previous == Booking.BookingStatus.CONFIRMED else 0
                if released:
                    self.ledger.release(UnitRef.for_booking(booking), released)
                transaction.on_commit(lambda: self._announce_cancellation(booking_id, released))

            logger.info(
                "booking_cancelled",
                booking_id=str(booking_id),
                previous_status=previous,
                released=released,
            )
            booking.refresh_from_db()
            return booking

        raise OperationalError(f"Booking {booking_id} kept changing while being cancelled.")

    def promote_waitlist(self, unit: UnitRef) -> list[Booking]:
        """Confirm waitlisted bookings of ``unit`` in arrival order while capacity allows.

        A booking asking for more tickets than are left is skipped, so a smaller booking further
        down the list can still be served. Every promotion goes through ``ledger.reserve``.
        """
        promoted: list[Booking] = []
        for booking in list(Booking.objects.for_unit(unit.event_id, unit.cohort_id).waitlisted()):
            if self.ledger.snapshot(unit).available == 0:
                break
            with transaction.atomic():
                result = self.ledger.reserve(unit, booking.quantity)
                if not result.reserved:
                    continue
                booking.transition_to(Booking.BookingStatus.CONFIRMED)
                booking.qr_payload = qr_codec.encode(booking)
                booking.promoted_at = timezone.now()
                flipped = Booking.objects.filter(pk=booking.pk, status=Booking.BookingStatus.WAITLISTED).update(
                    status=booking.status,
                    qr_payload=booking.qr_payload,
                    promoted_at=booking.promoted_at,
                    updated_at=booking.promoted_at,
                )
                if not flipped:
                    # Cancelled (or promoted by a concurrent sweep) since we listed it.
                    transaction.set_rollback(True)
                    continue
            logger.info(
                "waitlist_booking_promoted",
                booking_id=str(booking.pk),
                unit=str(unit),
                quantity=booking.quantity,
            )
            promoted.append(booking)

        if promoted:
            logger.info("waitlist_sweep_finished", unit=str(unit), promoted=len(promoted))
        return promoted

    def _announce_cancellation(self, booking_id: UUID, released: int) -> None:
        booking = Booking.objects.get(pk=booking_id)
        confirmed = Booking.objects.confirmed().filter(event_id=booking.event_id).aggregate(total=Sum("quantity"))
        booking_cancelled.send(
            sender=Booking,
            booking=booking,
            event_id=booking.event_id,
            confirmed_tickets=confirmed["total"] or 0,
            released=released,
        )

    def _find_retry(self, event_id: UUID, idempotency_key: str) -> Booking | None:
        return Booking.objects.filter(event_id=event_id, idempotency_key=idempotency_key).first()

    def _has_live_booking(self, event_id: UUID, email: str) -> bool:
        return Booking.objects.live().filter(event_id=event_id, attendee_email__iexact=email).exists()


registration_service = RegistrationService()
