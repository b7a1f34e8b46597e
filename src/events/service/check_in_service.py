"""Check-in protocol: validate a scanned or typed code and admit the attendee exactly once."""

import typing as t
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from uuid import UUID

import structlog
from django.db import transaction
from django.utils import timezone

from events.models import Booking
from events.service import qr_codec
from events.service.ledger import CapacityLedger, UnitRef, ledger

if t.TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

logger = structlog.get_logger(__name__)


class CheckInOutcome(StrEnum):
    SUCCESS = "success"
    ALREADY_CHECKED_IN = "already_checked_in"
    EVENT_MISMATCH = "event_mismatch"
    BOOKING_NOT_FOUND = "booking_not_found"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_NOT_CONFIRMED = "booking_not_confirmed"
    INVALID_PAYLOAD = "invalid_payload"


@dataclass(frozen=True)
class CheckInResult:
    outcome: CheckInOutcome
    booking: Booking | None = None
    checked_in_at: datetime | None = None
    checked_in_by_id: t.Any = None
    reason: str | None = None

    @property
    def admitted(self) -> bool:
        """Whether the attendee may walk in (first or repeated scan)."""
        return self.outcome in (CheckInOutcome.SUCCESS, CheckInOutcome.ALREADY_CHECKED_IN)


def _parse_uuid(value: str) -> UUID | None:
    try:
        return UUID(value)
    except ValueError:
        return None


class CheckInService:
    def __init__(self, capacity_ledger: CapacityLedger | None = None) -> None:
        """Initialize the check-in service."""
        self.ledger = capacity_ledger or ledger

    def check_in_code(
        self,
        raw: str,
        scanner_event_id: UUID,
        actor: "AbstractBaseUser | None" = None,
        method: str = Booking.CheckInMethod.QR,
    ) -> CheckInResult:
        """Single entry point for camera scans and manual entry."""
        decoded = qr_codec.decode(raw)
        if isinstance(decoded, qr_codec.InvalidPayload):
            return self._rejected(CheckInOutcome.INVALID_PAYLOAD, scanner_event_id, reason=decoded.reason)
        if isinstance(decoded, qr_codec.ManualCode):
            booking = self._lookup_manual_code(decoded.code, scanner_event_id)
            if booking is None:
                return self._rejected(CheckInOutcome.BOOKING_NOT_FOUND, scanner_event_id)
            decoded = qr_codec.QRPayload(booking_id=str(booking.pk), event_id=str(booking.event_id))
        return self.check_in(decoded, scanner_event_id, actor=actor, method=method)

    def check_in(
        self,
        payload: qr_codec.QRPayload,
        scanner_event_id: UUID,
        actor: "AbstractBaseUser | None" = None,
        method: str = Booking.CheckInMethod.QR,
    ) -> CheckInResult:
        """Admit the holder of ``payload`` to ``scanner_event_id``.

        The booking store is the source of truth; the payload is only used to find the booking
        and to catch a ticket presented at the wrong event before hitting the database.
        """
        payload_event_id = _parse_uuid(payload.event_id)
        booking_id = _parse_uuid(payload.booking_id)
        if payload_event_id is None or booking_id is None:
            return self._rejected(CheckInOutcome.INVALID_PAYLOAD, scanner_event_id, reason="malformed_id")
        if payload_event_id != scanner_event_id:
            return self._rejected(CheckInOutcome.EVENT_MISMATCH, scanner_event_id)

        booking = Booking.objects.filter(pk=booking_id).first()
        if booking is None:
            return self._rejected(CheckInOutcome.BOOKING_NOT_FOUND, scanner_event_id)
        if booking.event_id != scanner_event_id:
            return self._rejected(CheckInOutcome.EVENT_MISMATCH, scanner_event_id, booking=booking)
        if booking.status == Booking.BookingStatus.CANCELLED:
            return self._rejected(CheckInOutcome.BOOKING_CANCELLED, scanner_event_id, booking=booking)
        if booking.status != Booking.BookingStatus.CONFIRMED:
            return self._rejected(CheckInOutcome.BOOKING_NOT_CONFIRMED, scanner_event_id, booking=booking)
        if booking.checked_in:
            return self._already_checked_in(booking)

        now = timezone.now()
        with transaction.atomic():
            flipped = Booking.objects.filter(
                pk=booking.pk, checked_in=False, status=Booking.BookingStatus.CONFIRMED
            ).update(
                checked_in=True,
                checked_in_at=now,
                checked_in_by=actor,
                check_in_method=method,
                updated_at=now,
            )
            if flipped:
                self.ledger.record_check_in(UnitRef.for_booking(booking), booking.quantity)

        booking.refresh_from_db()
        if not flipped:
            # Another scanner won the race, or the booking was cancelled in between.
            if booking.status == Booking.BookingStatus.CANCELLED:
                return self._rejected(CheckInOutcome.BOOKING_CANCELLED, scanner_event_id, booking=booking)
            return self._already_checked_in(booking)

        logger.info(
            "check_in_succeeded",
            booking_id=str(booking.pk),
            event_id=str(scanner_event_id),
            method=method,
            quantity=booking.quantity,
        )
        return CheckInResult(
            outcome=CheckInOutcome.SUCCESS,
            booking=booking,
            checked_in_at=booking.checked_in_at,
            checked_in_by_id=booking.checked_in_by_id,
        )

    def _lookup_manual_code(self, code: str, scanner_event_id: UUID) -> Booking | None:
        bookings = Booking.objects.filter(event_id=scanner_event_id)
        if (booking_id := _parse_uuid(code)) is not None:
            return bookings.filter(pk=booking_id).first()
        return bookings.filter(reference__iexact=code).first()

    def _already_checked_in(self, booking: Booking) -> CheckInResult:
        logger.info("check_in_repeated", booking_id=str(booking.pk), event_id=str(booking.event_id))
        return CheckInResult(
            outcome=CheckInOutcome.ALREADY_CHECKED_IN,
            booking=booking,
            checked_in_at=booking.checked_in_at,
            checked_in_by_id=booking.checked_in_by_id,
        )

    def _rejected(
        self,
        outcome: CheckInOutcome,
        scanner_event_id: UUID,
        *,
        booking: Booking | None = None,
        reason: str | None = None,
    ) -> CheckInResult:
        logger.info(
            "check_in_rejected",
            outcome=outcome,
            event_id=str(scanner_event_id),
            booking_id=str(booking.pk) if booking else None,
            reason=reason,
        )
        return CheckInResult(outcome=outcome, booking=booking, reason=reason)


check_in_service = CheckInService()
