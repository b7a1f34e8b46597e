import typing as t
from datetime import datetime

from django.conf import settings
from django.db import models
from django.utils import timezone

from common.models import TimeStampedModel

from .inventory import InventoryUnit

if t.TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser, AnonymousUser


class EventQuerySet(models.QuerySet["Event"]):
    def published(self) -> t.Self:
        """Events currently accepting registrations and check-ins."""
        return self.filter(status=Event.EventStatus.PUBLISHED)

    def archivable(self, cutoff: datetime) -> t.Self:
        """Published events that ended before ``cutoff``."""
        return self.published().filter(end__isnull=False, end__lte=cutoff)

    def for_staff(self, user: "AbstractBaseUser | AnonymousUser") -> t.Self:
        """Events the user may operate (organizer or check-in staff)."""
        if user.is_anonymous:
            return self.none()
        if user.is_superuser:
            return self
        return self.filter(models.Q(organizer=user) | models.Q(check_in_staff=user)).distinct()


class Event(TimeStampedModel, InventoryUnit):
    """An event: the top-level inventory unit."""

    class EventStatus(models.TextChoices):
        DRAFT = "draft"
        PUBLISHED = "published"
        ARCHIVED = "archived"

    name = models.CharField(max_length=255, db_index=True)
    organizer = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="organized_events"
    )
    check_in_staff = models.ManyToManyField(settings.AUTH_USER_MODEL, related_name="check_in_events", blank=True)
    status = models.CharField(
        choices=EventStatus.choices, max_length=10, default=EventStatus.DRAFT, db_index=True
    )
    start = models.DateTimeField(null=True, blank=True)
    end = models.DateTimeField(null=True, blank=True)
    archived_at = models.DateTimeField(null=True, blank=True)

    objects = EventQuerySet.as_manager()

    class Meta(InventoryUnit.Meta):
        ordering = ["-start"]

    def __str__(self) -> str:
        return self.name

    @property
    def accepts_registrations(self) -> bool:
        return self.status == self.EventStatus.PUBLISHED

    def is_staff_member(self, user: "AbstractBaseUser | AnonymousUser") -> bool:
        """Whether the user can check attendees in and see live counters."""
        if user.is_anonymous:
            return False
        if user.is_superuser or self.organizer_id == user.pk:
            return True
        return self.check_in_staff.filter(pk=user.pk).exists()

    def archive(self) -> None:
        """Archive the event; counters are kept for reporting."""
        self.status = self.EventStatus.ARCHIVED
        self.archived_at = timezone.now()
        self.save(update_fields=["status", "archived_at", "updated_at"])


class Cohort(TimeStampedModel, InventoryUnit):
    """A session within an event, with its own ticket pool."""

    event = models.ForeignKey(Event, on_delete=models.CASCADE, related_name="cohorts")
    name = models.CharField(max_length=255)

    class Meta(InventoryUnit.Meta):
        ordering = ["created_at"]
        constraints = [
            *InventoryUnit.Meta.constraints,
            models.UniqueConstraint(fields=["event", "name"], name="unique_cohort_name_per_event"),
        ]

    def __str__(self) -> str:
        return f"{self.event.name} / {self.name}"
