import typing as t

from django.contrib.auth.models import AbstractBaseUser, AnonymousUser
from ninja_extra import ControllerBase


class UserAwareController(ControllerBase):
    def maybe_user(self) -> AbstractBaseUser | AnonymousUser:
        """Get the user for this request."""
        return t.cast(AbstractBaseUser | AnonymousUser, self.context.request.user)  # type: ignore[union-attr]

    def user(self) -> AbstractBaseUser:
        """Get the user for this request."""
        return t.cast(AbstractBaseUser, self.context.request.user)  # type: ignore[union-attr]
