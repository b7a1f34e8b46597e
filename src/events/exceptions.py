class InventoryUnitNotFoundError(Exception):
    """Raised when an event or cohort to reserve against does not exist."""


class InvalidStatusTransitionError(Exception):
    """Raised when a booking status change is not an edge of the status graph."""

    def __init__(self, current: str, new: str) -> None:
        """Keep both ends of the rejected transition."""
        super().__init__(f"Cannot move a booking from {current} to {new}.")
        self.current = current
        self.new = new


class RegistrationClosedError(Exception):
    """Raised when registering for an event that is not published."""


class DuplicateRegistrationError(Exception):
    """Raised when the attendee already holds a live booking for the event."""
