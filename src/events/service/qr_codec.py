"""Encode and decode the identity payload printed on a ticket's QR code.

The payload is an identity claim, not a capability: whoever decodes it still has to look the
booking up server-side before trusting anything in it.
"""

from dataclasses import dataclass
from io import BytesIO

import orjson
import qrcode

from events.models import Booking

MAX_RAW_LENGTH = 512


@dataclass(frozen=True)
class QRPayload:
    booking_id: str
    event_id: str
    user_id: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {"bookingId": self.booking_id, "eventId": self.event_id, "userId": self.user_id}


@dataclass(frozen=True)
class ManualCode:
    """Free text that is not structured data: a booking id or reference typed by staff."""

    code: str


@dataclass(frozen=True)
class InvalidPayload:
    reason: str


DecodeResult = QRPayload | ManualCode | InvalidPayload


def encode_payload(payload: QRPayload) -> str:
    """Compact, key-sorted JSON so the same booking always yields the same string."""
    return orjson.dumps(payload.as_dict(), option=orjson.OPT_SORT_KEYS).decode()


def encode(booking: Booking) -> str:
    """Serialize a booking's identity for its QR code."""
    return encode_payload(
        QRPayload(
            booking_id=str(booking.pk),
            event_id=str(booking.event_id),
            user_id=str(booking.user_id) if booking.user_id else None,
        )
    )


def decode(raw: str) -> DecodeResult:
    """Parse a camera-decoded or operator-typed string.

    Text that is not JSON is handed back as a manual code instead of being rejected, so the
    same path serves both the camera and the manual-entry fallback.
    """
    text = raw.strip()
    if not text:
        return InvalidPayload("empty")
    if len(text) > MAX_RAW_LENGTH:
        return InvalidPayload("too_long")
    if not text.startswith("{"):
        return ManualCode(text)

    try:
        data = orjson.loads(text)
    except orjson.JSONDecodeError:
        return InvalidPayload("malformed_json")
    if not isinstance(data, dict):
        return InvalidPayload("not_an_object")

    booking_id = data.get("bookingId")
    event_id = data.get("eventId")
    user_id = data.get("userId")
    if not isinstance(booking_id, str) or not booking_id:
        return InvalidPayload("missing_booking_id")
    if not isinstance(event_id, str) or not event_id:
        return InvalidPayload("missing_event_id")
    if user_id is not None and not isinstance(user_id, str):
        return InvalidPayload("invalid_user_id")
    return QRPayload(booking_id=booking_id, event_id=event_id, user_id=user_id or None)


def render_png(booking: Booking) -> bytes:
    """Render the ticket QR code as a PNG image."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(booking.qr_payload or encode(booking))
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = BytesIO()
    img.save(buffer, "PNG")
    return buffer.getvalue()

