"""Error taxonomy for the appointment coordinator."""


class CoordinatorError(Exception):
    """Base class for every error raised by the engine."""
    pass


class TransitionError(CoordinatorError):
    """A status change was rejected before anything was written."""
    pass


class InvalidTransitionError(TransitionError):
    """Raised when the requested status is not reachable from the current one."""

    def __init__(self, appointment_id, current, requested, actor):
        self.appointment_id = appointment_id
        self.current = current
        self.requested = requested
        self.actor = actor
        super().__init__(
            f"Appointment {appointment_id}: cannot move from "
            f"{current.value} to {requested.value} as {actor.value}"
        )


class MissingDataError(TransitionError):
    """Raised when a reschedule lacks a usable date and time."""
    pass


class StoreUnavailableError(CoordinatorError):
    """Raised when the persistence layer fails. Nothing is committed."""
    pass


class NotificationDeliveryError(CoordinatorError):
    """Raised by a notification channel when a reminder could not be delivered."""
    pass
