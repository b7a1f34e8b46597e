"""Tests for waitlist promotion."""

import pytest

from events.models import Booking, Cohort, Event
from events.service.ledger import UnitRef
from events.service.registration_service import RegistrationService
from events.tasks import promote_waitlist_task, sweep_waitlists
from events.tests.conftest import AttendeeFactory

pytestmark = pytest.mark.django_db


@pytest.fixture
def full_event(registration: RegistrationService, small_event: Event, attendee_factory: AttendeeFactory) -> Event:
    """``small_event`` with both tickets taken by one booking."""
    registration.register(event_id=small_event.pk, attendee=attendee_factory(email="holder@example.com"), quantity=2)
    return small_event


def _holder(event: Event) -> Booking:
    return Booking.objects.get(event=event, attendee_email="holder@example.com")


def test_promotes_in_arrival_order(
    registration: RegistrationService, full_event: Event, attendee_factory: AttendeeFactory
) -> None:
    first = registration.register(event_id=full_event.pk, attendee=attendee_factory())
    second = registration.register(event_id=full_event.pk, attendee=attendee_factory())
    third = registration.register(event_id=full_event.pk, attendee=attendee_factory())
    registration.cancel(_holder(full_event).pk)

    promoted = registration.promote_waitlist(UnitRef(full_event.pk))

    assert [b.pk for b in promoted] == [first.pk, second.pk]
    third.refresh_from_db()
    assert third.status == Booking.BookingStatus.WAITLISTED
    full_event.refresh_from_db()
    assert full_event.reserved == full_event.capacity


def test_skips_bookings_that_do_not_fit(
    registration: RegistrationService, small_event: Event, attendee_factory: AttendeeFactory
) -> None:
    one = registration.register(event_id=small_event.pk, attendee=attendee_factory())
    registration.register(event_id=small_event.pk, attendee=attendee_factory())
    big = registration.register(event_id=small_event.pk, attendee=attendee_factory(), quantity=2)
    small = registration.register(event_id=small_event.pk, attendee=attendee_factory())
    registration.cancel(one.pk)

    promoted = registration.promote_waitlist(UnitRef(small_event.pk))

    assert [b.pk for b in promoted] == [small.pk]
    big.refresh_from_db()
    assert big.status == Booking.BookingStatus.WAITLISTED


def test_promoted_booking_gets_a_ticket(
    registration: RegistrationService, full_event: Event, attendee_factory: AttendeeFactory
) -> None:
    waiting = registration.register(event_id=full_event.pk, attendee=attendee_factory())
    registration.cancel(_holder(full_event).pk)

    registration.promote_waitlist(UnitRef(full_event.pk))

    waiting.refresh_from_db()
    assert waiting.status == Booking.BookingStatus.CONFIRMED
    assert waiting.promoted_at is not None
    assert str(waiting.pk) in waiting.qr_payload


def test_nothing_to_promote_without_free_capacity(
    registration: RegistrationService, full_event: Event, attendee_factory: AttendeeFactory
) -> None:
    waiting = registration.register(event_id=full_event.pk, attendee=attendee_factory())

    assert registration.promote_waitlist(UnitRef(full_event.pk)) == []
    waiting.refresh_from_db()
    assert waiting.status == Booking.BookingStatus.WAITLISTED


def test_cancelled_waitlist_entries_are_not_promoted(
    registration: RegistrationService, full_event: Event, attendee_factory: AttendeeFactory
) -> None:
    gone = registration.register(event_id=full_event.pk, attendee=attendee_factory())
    registration.cancel(gone.pk)
    registration.cancel(_holder(full_event).pk)

    assert registration.promote_waitlist(UnitRef(full_event.pk)) == []
    full_event.refresh_from_db()
    assert full_event.reserved == 0


def test_cohort_waitlist_uses_the_cohort_pool(
    registration: RegistrationService, event: Event, cohort: Cohort, attendee_factory: AttendeeFactory
) -> None:
    holder = registration.register(event_id=event.pk, cohort_id=cohort.pk, attendee=attendee_factory(), quantity=3)
    waiting = registration.register(event_id=event.pk, cohort_id=cohort.pk, attendee=attendee_factory())

    # Free event-level tickets do not help a cohort waitlist.
    assert registration.promote_waitlist(UnitRef(event.pk)) == []
    registration.cancel(holder.pk)
    promoted = registration.promote_waitlist(UnitRef(event.pk, cohort.pk))

    assert [b.pk for b in promoted] == [waiting.pk]
    cohort.refresh_from_db()
    assert cohort.reserved == 1


def test_promote_waitlist_task(
    registration: RegistrationService, full_event: Event, attendee_factory: AttendeeFactory
) -> None:
    waiting = registration.register(event_id=full_event.pk, attendee=attendee_factory())
    registration.cancel(_holder(full_event).pk)

    result = promote_waitlist_task.apply(args=[str(full_event.pk), None])

    assert result.get() == [str(waiting.pk)]


def test_sweep_catches_capacity_increases(
    registration: RegistrationService, full_event: Event, attendee_factory: AttendeeFactory
) -> None:
    waiting = registration.register(event_id=full_event.pk, attendee=attendee_factory())
    full_event.capacity = 3
    full_event.save()

    assert sweep_waitlists() == 1
    waiting.refresh_from_db()
    assert waiting.status == Booking.BookingStatus.CONFIRMED


def test_sweep_ignores_unpublished_events(
    registration: RegistrationService, full_event: Event, attendee_factory: AttendeeFactory
) -> None:
    waiting = registration.register(event_id=full_event.pk, attendee=attendee_factory())
    registration.cancel(_holder(full_event).pk)
    full_event.archive()

    assert sweep_waitlists() == 0
    waiting.refresh_from_db()
    assert waiting.status == Booking.BookingStatus.WAITLISTED
