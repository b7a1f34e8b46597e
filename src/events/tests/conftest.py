import typing as t
from datetime import datetime, timedelta

import pytest
from django.contrib.auth.models import User
from django.test.client import Client

from conftest import UserFactory, jwt_client
from events.models import Booking, Cohort, Event
from events.service.registration_service import AttendeeInfo, RegistrationService


@pytest.fixture
def organizer(user_factory: UserFactory) -> User:
    return user_factory(username="organizer")


@pytest.fixture
def door_staff(user_factory: UserFactory) -> User:
    return user_factory(username="door_staff")


@pytest.fixture
def attendee_user(user_factory: UserFactory) -> User:
    return user_factory(username="attendee", email="attendee@example.com")


@pytest.fixture
def outsider(user_factory: UserFactory) -> User:
    return user_factory(username="outsider")


@pytest.fixture
def event(organizer: User, door_staff: User, next_week: datetime) -> Event:
    event = Event.objects.create(
        name="Launch Party",
        organizer=organizer,
        capacity=10,
        status=Event.EventStatus.PUBLISHED,
        start=next_week,
        end=next_week + timedelta(hours=4),
    )
    event.check_in_staff.add(door_staff)
    return event


@pytest.fixture
def small_event(organizer: User, next_week: datetime) -> Event:
    """A published event with two tickets."""
    return Event.objects.create(
        name="Intimate Gig",
        organizer=organizer,
        capacity=2,
        status=Event.EventStatus.PUBLISHED,
        start=next_week,
    )


@pytest.fixture
def other_event(organizer: User, next_week: datetime) -> Event:
    return Event.objects.create(
        name="Other Event",
        organizer=organizer,
        capacity=10,
        status=Event.EventStatus.PUBLISHED,
        start=next_week,
    )


@pytest.fixture
def draft_event(organizer: User) -> Event:
    return Event.objects.create(name="Draft", organizer=organizer, capacity=10)


@pytest.fixture
def cohort(event: Event) -> Cohort:
    return Cohort.objects.create(event=event, name="Morning session", capacity=3)


class AttendeeFactory:
    """Builds distinct attendee details."""

    def __init__(self) -> None:
        self.counter = 0

    def __call__(self, **kwargs: t.Any) -> AttendeeInfo:
        self.counter += 1
        defaults = {"name": f"Attendee {self.counter}", "email": f"attendee{self.counter}@example.com"}
        return AttendeeInfo(**{**defaults, **kwargs})


@pytest.fixture
def attendee_factory() -> AttendeeFactory:
    return AttendeeFactory()


@pytest.fixture
def registration() -> RegistrationService:
    return RegistrationService()


@pytest.fixture
def confirmed_booking(
    registration: RegistrationService, event: Event, attendee_user: User, attendee_factory: AttendeeFactory
) -> Booking:
    return registration.register(
        event_id=event.pk, attendee=attendee_factory(email=attendee_user.email), user=attendee_user
    )


@pytest.fixture
def organizer_client(organizer: User) -> Client:
    """API client for the event organizer."""
    return jwt_client(organizer)


@pytest.fixture
def door_staff_client(door_staff: User) -> Client:
    """API client for check-in staff."""
    return jwt_client(door_staff)


@pytest.fixture
def attendee_client(attendee_user: User) -> Client:
    """API client for the holder of ``confirmed_booking``."""
    return jwt_client(attendee_user)


@pytest.fixture
def outsider_client(outsider: User) -> Client:
    """API client for a user unrelated to the event."""
    return jwt_client(outsider)
