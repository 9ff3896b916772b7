"""State machine for the appointment lifecycle."""

from enum import Enum


class AppointmentStatus(str, Enum):
    """Statuses an appointment moves through."""
    PENDING = "pending"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    RESCHEDULE_REQUESTED = "reschedule_requested"
    RESCHEDULED = "rescheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def display_name(self) -> str:
        return DISPLAY_NAMES[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class Actor(str, Enum):
    """Party responsible for a status change."""
    PROVIDER = "provider"
    PATIENT = "patient"
    SYSTEM = "system"


DISPLAY_NAMES = {
    AppointmentStatus.PENDING: "Pending Confirmation",
    AppointmentStatus.SCHEDULED: "Scheduled",
    AppointmentStatus.CONFIRMED: "Confirmed",
    AppointmentStatus.DECLINED: "Declined",
    AppointmentStatus.RESCHEDULE_REQUESTED: "Reschedule Requested",
    AppointmentStatus.RESCHEDULED: "Rescheduled",
    AppointmentStatus.IN_PROGRESS: "In Progress",
    AppointmentStatus.COMPLETED: "Completed",
    AppointmentStatus.CANCELLED: "Cancelled",
}

INITIAL_STATUS = AppointmentStatus.PENDING

TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED})

# Statuses that ask a human to follow up
ATTENTION_STATUSES = frozenset({AppointmentStatus.DECLINED, AppointmentStatus.RESCHEDULE_REQUESTED})

TRANSITIONS = {
    AppointmentStatus.PENDING: {
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.DECLINED,
        AppointmentStatus.RESCHEDULE_REQUESTED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.RESCHEDULE_REQUESTED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.DECLINED: {
        AppointmentStatus.RESCHEDULED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.RESCHEDULE_REQUESTED: {
        AppointmentStatus.RESCHEDULED,
        AppointmentStatus.DECLINED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.RESCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.RESCHEDULE_REQUESTED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.IN_PROGRESS: {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
}

# Targets the system actor may force from any non-terminal status
# (expiry and no-show cleanup). Not part of the transition table.
SYSTEM_FORCED_TARGETS = frozenset({AppointmentStatus.CANCELLED})


def is_table_transition(current: AppointmentStatus, new_status: AppointmentStatus) -> bool:
    """Check the transition table only."""
    return new_status in TRANSITIONS[current]


def is_system_bypass(current: AppointmentStatus, new_status: AppointmentStatus, actor: Actor) -> bool:
    """Check whether the system actor is forcing a cleanup transition."""
    return (
        actor == Actor.SYSTEM
        and new_status in SYSTEM_FORCED_TARGETS
        and not current.is_terminal
    )


def can_transition(
    current: AppointmentStatus,
    new_status: AppointmentStatus,
    actor: Actor,
    allow_system_bypass: bool = True,
) -> bool:
    """Determine whether an actor may move an appointment to a new status."""
    if is_table_transition(current, new_status):
        return True
    if allow_system_bypass:
        return is_system_bypass(current, new_status, actor)
    return False


def needs_attention(new_status: AppointmentStatus, actor: Actor) -> bool:
    """A status set by someone other than the provider that needs provider follow-up."""
    return new_status in ATTENTION_STATUSES and actor != Actor.PROVIDER
