"""Status engine: validates transitions, writes history, derives dashboard views."""

import logging

import pytz

from appointment_coordinator.errors import InvalidTransitionError, MissingDataError
from appointment_coordinator.locks import AppointmentLocks
from appointment_coordinator.ports import ClockPort, StatusStore
from appointment_coordinator.state_machine import (
    Actor,
    AppointmentStatus,
    INITIAL_STATUS,
    can_transition,
    is_system_bypass,
    is_table_transition,
    needs_attention,
)
from appointment_coordinator.store import RescheduleDetails, StatusRecord
from appointment_coordinator.timeutil import appointment_datetime, to_utc

logger = logging.getLogger(__name__)


class StatusEngine:
    """Owns every write to the status store."""

    def __init__(self, store: StatusStore, clock: ClockPort, locks: AppointmentLocks | None = None,
                 allow_system_bypass: bool = True, tz=pytz.utc):
        self.store = store
        self.clock = clock
        self.locks = locks or AppointmentLocks()
        self.allow_system_bypass = allow_system_bypass
        self.tz = tz

    def check_transition(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        actor: Actor,
        reschedule_details: RescheduleDetails | None = None,
    ) -> AppointmentStatus:
        """Validate a transition without writing. Returns the current status."""
        current = self.get_current_status(appointment_id)
        if not can_transition(current, new_status, actor, self.allow_system_bypass):
            raise InvalidTransitionError(appointment_id, current, new_status, actor)

        if new_status == AppointmentStatus.RESCHEDULED:
            if reschedule_details is None:
                raise MissingDataError(f"Appointment {appointment_id}: rescheduling needs a new date and time")
            try:
                appointment_datetime(reschedule_details.new_date, reschedule_details.new_time, self.tz)
            except ValueError as e:
                raise MissingDataError(f"Appointment {appointment_id}: {e}") from e
        return current

    async def apply_transition(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        actor: Actor,
        reason: str | None = None,
        reschedule_details: RescheduleDetails | None = None,
    ) -> StatusRecord:
        """Validate and record a status change.

        The history append and the current-status update commit together.
        Raises InvalidTransitionError or MissingDataError without writing.
        """
        new_status = AppointmentStatus(new_status)
        actor = Actor(actor)

        async with self.locks.hold(appointment_id):
            try:
                current = self.check_transition(appointment_id, new_status, actor, reschedule_details)
            except (InvalidTransitionError, MissingDataError) as e:
                logger.warning("Rejected status change: %s", e)
                raise

            if not is_table_transition(current, new_status) and is_system_bypass(current, new_status, actor):
                logger.info("System forcing %s -> %s for %s", current.value, new_status.value, appointment_id)

            record = StatusRecord(
                appointment_id=appointment_id,
                previous_status=current,
                new_status=new_status,
                actor=actor,
                timestamp=to_utc(self.clock.now()),
                reason=reason,
                reschedule_details=reschedule_details,
            )
            stored = self.store.append(record)

        logger.info(
            "Appointment %s: %s -> %s by %s (seq %d)",
            appointment_id, current.value, new_status.value, actor.value, stored.sequence,
        )
        return stored

    def get_current_status(self, appointment_id: str) -> AppointmentStatus:
        return self.store.current(appointment_id) or INITIAL_STATUS

    def get_history(self, appointment_id: str) -> list[StatusRecord]:
        return self.store.history(appointment_id)

    def get_recent_updates(self, limit: int = 10) -> list[StatusRecord]:
        if limit <= 0:
            return []
        return self.store.recent(limit)

    def get_needing_attention(self) -> list[StatusRecord]:
        """The record that raised the flag, one per flagged appointment."""
        return [r for r in self.store.latest_records() if needs_attention(r.new_status, r.actor)]

    def get_status_summary(self) -> dict[AppointmentStatus, int]:
        summary = {status: 0 for status in AppointmentStatus}
        for status in self.store.current_all().values():
            summary[status] += 1
        return summary

    def register(self, appointment_id: str, date: str | None = None, time: str | None = None):
        """Record that an appointment exists, with its date/time when known."""
        return self.store.register(appointment_id, date, time)

    def rebuild_projection(self) -> int:
        """Recompute current statuses from history alone."""
        rebuilt = self.store.rebuild_current()
        logger.info("Rebuilt current status for %d appointments", rebuilt)
        return rebuilt

    def purge(self, appointment_id: str) -> None:
        self.store.purge(appointment_id)
