"""Capacity ledger: the only writer of an inventory unit's counters.

Every mutation is a single conditional ``UPDATE`` so the check and the increment happen in
one atomic database step; there is never a read-then-write window for concurrent callers.
"""

import functools
import typing as t
from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID

import structlog
from django.conf import settings
from django.db import OperationalError, connection, transaction
from django.db.models import F, QuerySet, Value
from django.db.models.functions import Greatest
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_random_exponential

from events.exceptions import InventoryUnitNotFoundError
from events.models import Booking, Cohort, Event, InventoryUnit
from events.signals import unit_counters_changed

logger = structlog.get_logger(__name__)

P = t.ParamSpec("P")
R = t.TypeVar("R")


@dataclass(frozen=True)
class UnitRef:
    """Address of an inventory unit: an event, or one of its cohorts."""

    event_id: UUID
    cohort_id: UUID | None = None

    @classmethod
    def for_booking(cls, booking: Booking) -> "UnitRef":
        return cls(event_id=booking.event_id, cohort_id=booking.cohort_id)

    @classmethod
    def units_of(cls, event: Event) -> list["UnitRef"]:
        """The event pool followed by each of its cohort pools."""
        cohorts = (cls(event_id=event.pk, cohort_id=cohort.pk) for cohort in event.cohorts.all())
        return [cls(event_id=event.pk), *cohorts]

    def queryset(self) -> QuerySet[t.Any]:
        if self.cohort_id is not None:
            return Cohort.objects.filter(pk=self.cohort_id, event_id=self.event_id)
        return Event.objects.filter(pk=self.event_id)

    def __str__(self) -> str:
        return f"{self.event_id}/{self.cohort_id}" if self.cohort_id else str(self.event_id)


class ReservationOutcome(StrEnum):
    RESERVED = "reserved"
    CAPACITY_EXCEEDED = "capacity_exceeded"


@dataclass(frozen=True)
class ReservationResult:
    outcome: ReservationOutcome
    unit: UnitRef
    quantity: int

    @property
    def reserved(self) -> bool:
        return self.outcome == ReservationOutcome.RESERVED


@dataclass(frozen=True)
class UnitSnapshot:
    """Read-only counters of an inventory unit, for dashboards and the UI."""

    unit: UnitRef
    capacity: int
    reserved: int
    checked_in: int

    @property
    def available(self) -> int:
        return max(0, self.capacity - self.reserved)


def _retry_transient(func: t.Callable[P, R]) -> t.Callable[P, R]:
    """Retry a standalone ledger statement on transient lock/serialization failures.

    Inside an outer transaction the failed statement has already poisoned the transaction,
    so the error is re-raised for the owner of that transaction to retry as a whole.
    """
    retrying = retry(
        retry=retry_if_exception_type(OperationalError),
        stop=stop_after_attempt(settings.LEDGER_RETRY_ATTEMPTS),
        wait=wait_random_exponential(multiplier=0.05, max=1),
        reraise=True,
    )(func)

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        if connection.in_atomic_block:
            return func(*args, **kwargs)
        return retrying(*args, **kwargs)

    return wrapper


class CapacityLedger:
    """Atomic reserve/release/check-in counters per inventory unit."""

    @_retry_transient
    def reserve(self, unit: UnitRef, quantity: int) -> ReservationResult:
        """Reserve ``quantity`` tickets if, and only if, they all fit.

        ``CAPACITY_EXCEEDED`` is an ordinary outcome: nothing is changed and the caller decides
        what to do (e.g. waitlist).
        """
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        updated = (
            unit.queryset()
            .filter(reserved__lte=F("capacity") - quantity)
            .update(reserved=F("reserved") + quantity)
        )
        if not updated:
            if not unit.queryset().exists():
                raise InventoryUnitNotFoundError(f"Inventory unit {unit} does not exist.")
            logger.info("reservation_rejected", unit=str(unit), quantity=quantity)
            return ReservationResult(ReservationOutcome.CAPACITY_EXCEEDED, unit, quantity)

        logger.info("reservation_granted", unit=str(unit), quantity=quantity)
        self._publish(unit)
        return ReservationResult(ReservationOutcome.RESERVED, unit, quantity)

    @_retry_transient
    def release(self, unit: UnitRef, quantity: int) -> None:
        """Give ``quantity`` tickets back, never going below zero."""
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        updated = unit.queryset().update(reserved=Greatest(F("reserved") - quantity, Value(0)))
        if not updated:
            raise InventoryUnitNotFoundError(f"Inventory unit {unit} does not exist.")
        logger.info("reservation_released", unit=str(unit), quantity=quantity)
        self._publish(unit)

    @_retry_transient
    def record_check_in(self, unit: UnitRef, quantity: int = 1) -> None:
        """Count admitted attendees for live stats."""
        updated = unit.queryset().update(checked_in=F("checked_in") + quantity)
        if not updated:
            raise InventoryUnitNotFoundError(f"Inventory unit {unit} does not exist.")
        self._publish(unit)

    def snapshot(self, unit: UnitRef) -> UnitSnapshot:
        """Current counters of ``unit``."""
        row = unit.queryset().values("capacity", "reserved", "checked_in").first()
        if row is None:
            raise InventoryUnitNotFoundError(f"Inventory unit {unit} does not exist.")
        return UnitSnapshot(unit=unit, **row)

    def snapshot_of(self, instance: InventoryUnit) -> UnitSnapshot:
        """Snapshot from an already loaded event or cohort."""
        if isinstance(instance, Cohort):
            unit = UnitRef(event_id=instance.event_id, cohort_id=instance.pk)
        else:
            unit = UnitRef(event_id=instance.pk)
        return UnitSnapshot(
            unit=unit, capacity=instance.capacity, reserved=instance.reserved, checked_in=instance.checked_in
        )

    def _publish(self, unit: UnitRef) -> None:
        def on_commit() -> None:
            unit_counters_changed.send(sender=CapacityLedger, snapshot=self.snapshot(unit))

        transaction.on_commit(on_commit)


ledger = CapacityLedger()
