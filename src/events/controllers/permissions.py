from django.http import HttpRequest
from ninja_extra import ControllerBase
from ninja_extra.permissions import BasePermission

from events import models


class RootPermission(BasePermission):
    def has_permission(self, request: HttpRequest, controller: ControllerBase) -> bool:
        """Must implement abstract method. This is due to an error in Ninja Extra.

        This Method will be ignored, only has_object_permission will be called.
        """
        return True


class IsEventStaff(RootPermission):
    message = "Only the organizer or check-in staff of this event can do this."

    def has_object_permission(
        self,
        request: HttpRequest,
        controller: ControllerBase,
        obj: models.Event,
    ) -> bool:
        """Organizer, check-in staff or superuser."""
        return obj.is_staff_member(request.user)


class CanManageBooking(RootPermission):
    message = "You cannot access this booking."

    def has_object_permission(
        self,
        request: HttpRequest,
        controller: ControllerBase,
        obj: models.Booking,
    ) -> bool:
        """The booking holder, or staff of the booking's event."""
        if obj.user_id is not None and obj.user_id == request.user.pk:
            return True
        return obj.event.is_staff_member(request.user)
