"""Transports from a scanner to the check-in protocol.

Both gateways end in ``CheckInService.check_in_code``, so camera scans and manual entry share
one server-side code path whichever transport a scanner uses.
"""

import typing as t
from datetime import datetime
from uuid import UUID

import httpx
import structlog
from asgiref.sync import sync_to_async
from pydantic import BaseModel, ValidationError

from events.service.check_in_service import CheckInResult, check_in_service

if t.TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

logger = structlog.get_logger(__name__)


class GatewayError(Exception):
    """The check-in request failed without a verdict."""


class GatewayUnavailableError(GatewayError):
    """The server could not be reached; the request may be retried."""


class CheckInReply(BaseModel):
    outcome: str
    reference: str | None = None
    attendee_name: str | None = None
    quantity: int | None = None
    checked_in_at: datetime | None = None
    reason: str | None = None

    @classmethod
    def from_result(cls, result: CheckInResult) -> "CheckInReply":
        booking = result.booking
        return cls(
            outcome=result.outcome.value,
            reference=booking.reference if booking else None,
            attendee_name=booking.attendee_name if booking else None,
            quantity=booking.quantity if booking else None,
            checked_in_at=result.checked_in_at,
            reason=result.reason,
        )


class CheckInGateway(t.Protocol):
    async def submit(self, code: str, method: str) -> CheckInReply: ...

    async def aclose(self) -> None: ...


class LocalCheckInGateway:
    """Calls the check-in service in-process, for a scanner running next to the database."""

    def __init__(self, event_id: UUID, actor: "AbstractBaseUser | None" = None) -> None:
        """Initialize the gateway for one event."""
        self.event_id = event_id
        self.actor = actor

    async def submit(self, code: str, method: str) -> CheckInReply:
        result = await sync_to_async(check_in_service.check_in_code)(
            code, self.event_id, actor=self.actor, method=method
        )
        return CheckInReply.from_result(result)

    async def aclose(self) -> None:
        return None


class HttpCheckInGateway:
    """Posts codes to the check-in endpoint with a staff JWT."""

    # Status codes that carry a check-in verdict in the body.
    VERDICT_STATUSES = frozenset({200, 400, 404})

    def __init__(
        self,
        base_url: str,
        event_id: UUID,
        token: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the gateway for one event."""
        self.event_id = event_id
        self._client = client or httpx.AsyncClient(base_url=base_url)
        self._headers = {"Authorization": f"Bearer {token}"}

    async def submit(self, code: str, method: str) -> CheckInReply:
        try:
            response = await self._client.post(
                f"/api/events/{self.event_id}/check-in",
                json={"code": code, "method": method},
                headers=self._headers,
            )
        except httpx.TimeoutException as exc:
            raise TimeoutError(str(exc)) from exc
        except httpx.TransportError as exc:
            logger.warning("check_in_gateway_unreachable", error=str(exc))
            raise GatewayUnavailableError(str(exc)) from exc

        if response.status_code in self.VERDICT_STATUSES:
            try:
                return CheckInReply.model_validate(response.json())
            except (ValueError, ValidationError) as exc:
                # e.g. a 404 for an unknown event carries no verdict.
                logger.error(
                    "check_in_gateway_unreadable_reply", status_code=response.status_code, body=response.text[:200]
                )
                raise GatewayError(f"Unreadable reply with status {response.status_code}.") from exc
        if response.status_code >= 500:
            raise GatewayUnavailableError(f"Server error {response.status_code}.")
        logger.error("check_in_gateway_refused", status_code=response.status_code, body=response.text[:200])
        raise GatewayError(f"Check-in refused with status {response.status_code}.")

    async def aclose(self) -> None:
        await self._client.aclose()
