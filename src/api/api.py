from django.conf import settings
from django.core.exceptions import ValidationError
from django.http import HttpRequest
from ninja_extra import NinjaExtraAPI
from ninja_jwt.controller import NinjaJWTDefaultController

from common.schema import ResponseOk, VersionResponse
from common.throttling import AnonDefaultThrottle, UserDefaultThrottle
from events.controllers import EVENT_CONTROLLERS
from events.exceptions import (
    DuplicateRegistrationError,
    InvalidStatusTransitionError,
    InventoryUnitNotFoundError,
    RegistrationClosedError,
)

from .exception_handlers import (
    handle_django_validation_error,
    handle_duplicate_registration_error,
    handle_general_exception,
    handle_invalid_status_transition_error,
    handle_inventory_unit_not_found_error,
    handle_registration_closed_error,
)

api = NinjaExtraAPI(
    title="Tikiti API",
    docs_url="/docs",
    version=settings.VERSION,
    description=f"Tikiti ticketing API {settings.VERSION}",
    app_name=f"tikiti-api-{settings.VERSION}",
    urls_namespace="api",
    servers=[
        {"url": settings.SERVICE_URL, "description": settings.SERVICE_DESCRIPTION},
    ],
    throttle=[AnonDefaultThrottle(), UserDefaultThrottle()],
)


@api.get("/version", tags=["Version"], response={200: VersionResponse})
def version(request: HttpRequest) -> tuple[int, VersionResponse]:
    """Get the API version.

    Args:
        request: The incoming HTTP request.

    Returns:
        The response status code and message.
    """
    return 200, VersionResponse(version=settings.VERSION)


@api.get("/healthcheck", tags=["Healthcheck"], response={200: ResponseOk})
def healthcheck(request: HttpRequest) -> tuple[int, ResponseOk]:
    """Check the health of the API.

    Args:
        request: The incoming HTTP request.

    Returns:
        The response status code and message.
    """
    return 200, ResponseOk()


api.register_controllers(
    # Token obtain/refresh for staff and scanner devices
    NinjaJWTDefaultController,
    # Event controllers
    *EVENT_CONTROLLERS,
)

EXCEPTION_HANDLERS = {
    Exception: handle_general_exception,
    ValidationError: handle_django_validation_error,
    InventoryUnitNotFoundError: handle_inventory_unit_not_found_error,
    RegistrationClosedError: handle_registration_closed_error,
    DuplicateRegistrationError: handle_duplicate_registration_error,
    InvalidStatusTransitionError: handle_invalid_status_transition_error,
}

for exc, handler in EXCEPTION_HANDLERS.items():
    api.add_exception_handler(exc, handler)
