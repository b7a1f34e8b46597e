"""Tests for registration and cancellation."""

import typing as t
import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest
from django.contrib.auth.models import User
from django.db import connection

from events.exceptions import DuplicateRegistrationError, InventoryUnitNotFoundError, RegistrationClosedError
from events.models import Booking, Cohort, Event
from events.service import qr_codec
from events.service.ledger import UnitRef
from events.service.registration_service import AttendeeInfo, RegistrationService
from events.signals import booking_cancelled
from events.tests.conftest import AttendeeFactory

pytestmark = pytest.mark.django_db


class TestRegister:
    def test_confirms_when_tickets_are_available(
        self, registration: RegistrationService, event: Event, attendee_factory: AttendeeFactory
    ) -> None:
        booking = registration.register(event_id=event.pk, attendee=attendee_factory(), quantity=2)

        assert booking.status == Booking.BookingStatus.CONFIRMED
        assert booking.quantity == 2
        assert booking.reference.startswith("TKT-")
        event.refresh_from_db()
        assert event.reserved == 2

    def test_confirmed_booking_carries_its_qr_payload(
        self, registration: RegistrationService, event: Event, attendee_user: User, attendee_factory: AttendeeFactory
    ) -> None:
        booking = registration.register(event_id=event.pk, attendee=attendee_factory(), user=attendee_user)

        decoded = qr_codec.decode(booking.qr_payload)
        assert decoded == qr_codec.QRPayload(
            booking_id=str(booking.pk), event_id=str(event.pk), user_id=str(attendee_user.pk)
        )

    def test_guest_booking_has_no_user_in_payload(
        self, registration: RegistrationService, event: Event, attendee_factory: AttendeeFactory
    ) -> None:
        booking = registration.register(event_id=event.pk, attendee=attendee_factory())

        decoded = qr_codec.decode(booking.qr_payload)
        assert isinstance(decoded, qr_codec.QRPayload)
        assert decoded.user_id is None

    def test_waitlists_when_full(
        self, registration: RegistrationService, small_event: Event, attendee_factory: AttendeeFactory
    ) -> None:
        registration.register(event_id=small_event.pk, attendee=attendee_factory(), quantity=2)

        booking = registration.register(event_id=small_event.pk, attendee=attendee_factory())

        assert booking.status == Booking.BookingStatus.WAITLISTED
        assert booking.qr_payload == ""
        small_event.refresh_from_db()
        assert small_event.reserved == 2

    def test_waitlists_when_quantity_does_not_fit(
        self, registration: RegistrationService, small_event: Event, attendee_factory: AttendeeFactory
    ) -> None:
        registration.register(event_id=small_event.pk, attendee=attendee_factory())

        booking = registration.register(event_id=small_event.pk, attendee=attendee_factory(), quantity=2)

        assert booking.status == Booking.BookingStatus.WAITLISTED
        small_event.refresh_from_db()
        assert small_event.reserved == 1

    def test_cohort_registration_draws_from_the_cohort(
        self, registration: RegistrationService, event: Event, cohort: Cohort, attendee_factory: AttendeeFactory
    ) -> None:
        booking = registration.register(event_id=event.pk, cohort_id=cohort.pk, attendee=attendee_factory(), quantity=3)
        overflow = registration.register(event_id=event.pk, cohort_id=cohort.pk, attendee=attendee_factory())

        assert booking.status == Booking.BookingStatus.CONFIRMED
        assert overflow.status == Booking.BookingStatus.WAITLISTED
        cohort.refresh_from_db()
        event.refresh_from_db()
        assert cohort.reserved == 3
        assert event.reserved == 0

    @pytest.mark.parametrize("status", [Event.EventStatus.DRAFT, Event.EventStatus.ARCHIVED])
    def test_closed_events_reject_registration(
        self, registration: RegistrationService, event: Event, attendee_factory: AttendeeFactory, status: str
    ) -> None:
        event.status = status
        event.save()

        with pytest.raises(RegistrationClosedError):
            registration.register(event_id=event.pk, attendee=attendee_factory())
        event.refresh_from_db()
        assert event.reserved == 0

    def test_unknown_event(self, registration: RegistrationService, attendee_factory: AttendeeFactory) -> None:
        with pytest.raises(InventoryUnitNotFoundError):
            registration.register(event_id=uuid.uuid4(), attendee=attendee_factory())

    def test_cohort_of_another_event(
        self,
        registration: RegistrationService,
        other_event: Event,
        cohort: Cohort,
        attendee_factory: AttendeeFactory,
    ) -> None:
        with pytest.raises(InventoryUnitNotFoundError):
            registration.register(event_id=other_event.pk, cohort_id=cohort.pk, attendee=attendee_factory())

    def test_rejects_non_positive_quantity(
        self, registration: RegistrationService, event: Event, attendee_factory: AttendeeFactory
    ) -> None:
        with pytest.raises(ValueError):
            registration.register(event_id=event.pk, attendee=attendee_factory(), quantity=0)

    def test_duplicate_email_is_rejected(
        self, registration: RegistrationService, event: Event, attendee_factory: AttendeeFactory
    ) -> None:
        registration.register(event_id=event.pk, attendee=attendee_factory(email="dup@example.com"))

        with pytest.raises(DuplicateRegistrationError):
            registration.register(event_id=event.pk, attendee=attendee_factory(email=" DUP@example.com "))
        event.refresh_from_db()
        assert event.reserved == 1

    def test_can_register_again_after_cancelling(
        self, registration: RegistrationService, event: Event, attendee_factory: AttendeeFactory
    ) -> None:
        first = registration.register(event_id=event.pk, attendee=attendee_factory(email="again@example.com"))
        registration.cancel(first.pk)

        second = registration.register(event_id=event.pk, attendee=attendee_factory(email="again@example.com"))

        assert second.pk != first.pk
        assert second.status == Booking.BookingStatus.CONFIRMED

    def test_retry_with_idempotency_key_reserves_once(
        self, registration: RegistrationService, event: Event, attendee_factory: AttendeeFactory
    ) -> None:
        attendee = attendee_factory()
        first = registration.register(event_id=event.pk, attendee=attendee, quantity=2, idempotency_key="req-1")
        retry = registration.register(event_id=event.pk, attendee=attendee, quantity=2, idempotency_key="req-1")

        assert retry.pk == first.pk
        event.refresh_from_db()
        assert event.reserved == 2
        assert Booking.objects.filter(event=event).count() == 1

    def test_failure_after_reserving_rolls_the_reservation_back(
        self,
        registration: RegistrationService,
        event: Event,
        attendee_factory: AttendeeFactory,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def boom(booking: Booking) -> str:
            raise RuntimeError("payload encoding failed")

        monkeypatch.setattr(qr_codec, "encode", boom)

        with pytest.raises(RuntimeError):
            registration.register(event_id=event.pk, attendee=attendee_factory())

        event.refresh_from_db()
        assert event.reserved == 0
        assert not Booking.objects.filter(event=event).exists()


class TestCancel:
    def test_cancelling_a_confirmed_booking_releases_its_tickets(
        self, registration: RegistrationService, event: Event, attendee_factory: AttendeeFactory
    ) -> None:
        booking = registration.register(event_id=event.pk, attendee=attendee_factory(), quantity=3)

        cancelled = registration.cancel(booking.pk)

        assert cancelled.status == Booking.BookingStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        event.refresh_from_db()
        assert event.reserved == 0

    def test_cancelling_twice_is_a_no_op(
        self, registration: RegistrationService, event: Event, attendee_factory: AttendeeFactory
    ) -> None:
        registration.register(event_id=event.pk, attendee=attendee_factory(), quantity=2)
        booking = registration.register(event_id=event.pk, attendee=attendee_factory(), quantity=3)

        registration.cancel(booking.pk)
        again = registration.cancel(booking.pk)

        assert again.status == Booking.BookingStatus.CANCELLED
        event.refresh_from_db()
        assert event.reserved == 2

    def test_cancelling_a_waitlisted_booking_releases_nothing(
        self, registration: RegistrationService, small_event: Event, attendee_factory: AttendeeFactory
    ) -> None:
        registration.register(event_id=small_event.pk, attendee=attendee_factory(), quantity=2)
        waiting = registration.register(event_id=small_event.pk, attendee=attendee_factory())

        registration.cancel(waiting.pk)

        small_event.refresh_from_db()
        assert small_event.reserved == 2

    def test_unknown_booking(self, registration: RegistrationService) -> None:
        with pytest.raises(Booking.DoesNotExist):
            registration.cancel(uuid.uuid4())

    def test_notifies_with_the_remaining_confirmed_tickets(
        self,
        registration: RegistrationService,
        event: Event,
        attendee_factory: AttendeeFactory,
        django_capture_on_commit_callbacks: t.Any,
    ) -> None:
        registration.register(event_id=event.pk, attendee=attendee_factory(), quantity=4)
        booking = registration.register(event_id=event.pk, attendee=attendee_factory(), quantity=2)
        received: list[dict[str, t.Any]] = []

        def receiver(sender: t.Any, **kwargs: t.Any) -> None:
            received.append(kwargs)

        booking_cancelled.connect(receiver)
        try:
            with django_capture_on_commit_callbacks(execute=True):
                registration.cancel(booking.pk)
        finally:
            booking_cancelled.disconnect(receiver)

        assert len(received) == 1
        assert received[0]["event_id"] == event.pk
        assert received[0]["confirmed_tickets"] == 4
        assert received[0]["released"] == 2

    def test_cancellation_promotes_the_waitlist(
        self,
        registration: RegistrationService,
        small_event: Event,
        attendee_factory: AttendeeFactory,
        django_capture_on_commit_callbacks: t.Any,
    ) -> None:
        holder = registration.register(event_id=small_event.pk, attendee=attendee_factory(), quantity=2)
        waiting = registration.register(event_id=small_event.pk, attendee=attendee_factory())

        with django_capture_on_commit_callbacks(execute=True):
            registration.cancel(holder.pk)

        waiting.refresh_from_db()
        assert waiting.status == Booking.BookingStatus.CONFIRMED
        small_event.refresh_from_db()
        assert small_event.reserved == 1


@pytest.mark.django_db(transaction=True)
def test_concurrent_registrations_confirm_up_to_capacity(small_event: Event) -> None:
    """Three attendees race for two tickets: two are confirmed, one waits."""
    registration = RegistrationService()

    def register(n: int) -> str:
        try:
            attendee = AttendeeInfo(name=f"Racer {n}", email=f"racer{n}@example.com")
            return registration.register(event_id=small_event.pk, attendee=attendee).status
        finally:
            connection.close()

    with ThreadPoolExecutor(max_workers=3) as pool:
        statuses = list(pool.map(register, range(3)))

    assert sorted(statuses) == sorted(
        [Booking.BookingStatus.CONFIRMED, Booking.BookingStatus.CONFIRMED, Booking.BookingStatus.WAITLISTED]
    )
    small_event.refresh_from_db()
    assert small_event.reserved == 2


@pytest.mark.django_db(transaction=True)
def test_cancel_racing_promotion_never_leaks_capacity(small_event: Event) -> None:
    """A waitlisted booking cancelled while it is being promoted ends cancelled with its tickets returned."""
    registration = RegistrationService()
    holders = [
        registration.register(
            event_id=small_event.pk, attendee=AttendeeInfo(name=f"Holder {n}", email=f"holder{n}@example.com")
        )
        for n in range(2)
    ]
    waiting = registration.register(
        event_id=small_event.pk, attendee=AttendeeInfo(name="Waiting", email="waiting@example.com")
    )
    assert waiting.status == Booking.BookingStatus.WAITLISTED
    Event.objects.filter(pk=small_event.pk).update(capacity=3)

    def cancel() -> None:
        try:
            registration.cancel(waiting.pk)
        finally:
            connection.close()

    def promote() -> None:
        try:
            registration.promote_waitlist(UnitRef(small_event.pk))
        finally:
            connection.close()

    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(cancel), pool.submit(promote)]
        for future in futures:
            future.result()

    waiting.refresh_from_db()
    assert waiting.status == Booking.BookingStatus.CANCELLED
    small_event.refresh_from_db()
    assert small_event.reserved == sum(holder.quantity for holder in holders)
