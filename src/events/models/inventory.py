import typing as t

from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import F, Q

# Written only by the capacity ledger through conditional UPDATEs.
COUNTER_FIELDS = frozenset({"reserved", "checked_in"})


class InventoryUnit(models.Model):
    """A finite pool of tickets: an event, or a cohort within an event.

    ``reserved`` and ``checked_in`` are owned by ``events.service.ledger``. Saving an existing
    instance never writes them back, so a stale in-memory copy cannot clobber a concurrent
    reservation.
    """

    capacity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    reserved = models.PositiveIntegerField(default=0, editable=False)
    checked_in = models.PositiveIntegerField(default=0, editable=False)

    class Meta:
        abstract = True
        constraints = [
            models.CheckConstraint(
                condition=Q(reserved__lte=F("capacity")),
                name="%(app_label)s_%(class)s_reserved_lte_capacity",
            ),
        ]

    @property
    def available(self) -> int:
        """Tickets that can still be reserved."""
        return max(0, self.capacity - self.reserved)

    def save(self, *args: t.Any, **kwargs: t.Any) -> None:
        """Persist everything except the ledger-owned counters on updates."""
        if not self._state.adding:
            update_fields = kwargs.get("update_fields")
            if update_fields is None:
                kwargs["update_fields"] = [
                    f.name
                    for f in self._meta.concrete_fields
                    if not f.primary_key and f.name not in COUNTER_FIELDS
                ]
            elif COUNTER_FIELDS.intersection(update_fields):
                raise ValueError("reserved/checked_in can only be changed through the capacity ledger.")
        super().save(*args, **kwargs)
