"""Exception handlers for the API."""

import traceback
import typing as t
from copy import deepcopy

import structlog
from django.conf import settings
from django.core.exceptions import ValidationError
from django.http import HttpRequest
from ninja.responses import Response

from events.exceptions import (
    DuplicateRegistrationError,
    InvalidStatusTransitionError,
    InventoryUnitNotFoundError,
    RegistrationClosedError,
)

logger = structlog.get_logger(__name__)


def handle_general_exception(request: HttpRequest, exc: Exception | t.Type[Exception]) -> Response:
    """Handle a general exception.

    Args:
        request: The incoming HTTP request.
        exc: The exception.

    Returns:
        The response.
    """
    is_staff = getattr(request, "user", None) and request.user.is_staff
    logger.exception(
        "INTERNAL_SERVER_ERROR",
        method=request.method,
        path=request.path,
        headers=obfuscate(dict(request.headers)),
        GET=obfuscate(request.GET.dict()),
        user=str(request.user) if getattr(request, "user", None) else None,
    )
    data = {"detail": "Internal Server Error."}
    if settings.DEBUG or is_staff:  # pragma: no cover
        data["traceback"] = traceback.format_exc()
    return Response(status=500, data=data)


def handle_django_validation_error(request: HttpRequest, exc: ValidationError | t.Type[ValidationError]) -> Response:
    """Handle a validation error.

    Args:
        request: The incoming HTTP request.
        exc: The exception.
    """
    logger.error("VALIDATION_ERROR", exc_info=True)
    if hasattr(exc, "error_dict"):
        error_dict = {k: [ee for e in v for ee in e] for k, v in exc.error_dict.items()}
    else:
        error_dict = {"__all__": list(exc.messages)}
    return Response(status=400, data={"errors": error_dict})


def handle_inventory_unit_not_found_error(
    request: HttpRequest, exc: InventoryUnitNotFoundError | t.Type[InventoryUnitNotFoundError]
) -> Response:
    """Handle a missing event or cohort."""
    return Response(status=404, data={"message": str(exc)})


def handle_registration_closed_error(
    request: HttpRequest, exc: RegistrationClosedError | t.Type[RegistrationClosedError]
) -> Response:
    """Handle a registration for an event that is not open."""
    return Response(status=400, data={"message": "This event is not accepting registrations."})


def handle_duplicate_registration_error(
    request: HttpRequest, exc: DuplicateRegistrationError | t.Type[DuplicateRegistrationError]
) -> Response:
    """Handle a second live registration for the same attendee."""
    return Response(status=409, data={"message": "You are already registered for this event."})


def handle_invalid_status_transition_error(
    request: HttpRequest, exc: InvalidStatusTransitionError | t.Type[InvalidStatusTransitionError]
) -> Response:
    """Handle a booking status change the booking cannot make."""
    return Response(status=409, data={"message": str(exc)})


SENSITIVE_KEYS = {"password", "token", "x-api-key", "authorization", "authentication"}


def obfuscate(data: dict[str, t.Any]) -> dict[str, t.Any]:
    """Obfuscate sensitive data in payloads and headers."""
    new_data = deepcopy(data)
    for key in data.keys():
        if key.lower() in SENSITIVE_KEYS:
            new_data[key] = "********"
    return new_data
