"""Reminder planner: computes reminder schedules and owns the reminder store."""

import logging
import uuid
from datetime import datetime, timedelta

import pytz

from appointment_coordinator.errors import MissingDataError
from appointment_coordinator.locks import AppointmentLocks
from appointment_coordinator.notices import offset_label
from appointment_coordinator.ports import ClockPort, ReminderStore
from appointment_coordinator.store import ReminderEntry, ReminderPlan, ReminderState
from appointment_coordinator.timeutil import appointment_datetime, to_utc

logger = logging.getLogger(__name__)

DEFAULT_OFFSETS_MINUTES = [24 * 60, 2 * 60]


class ReminderPlanner:
    """Builds reminder plans and records every reminder state change."""

    def __init__(self, store: ReminderStore, clock: ClockPort, locks: AppointmentLocks | None = None,
                 default_offsets_minutes: list[int] | None = None,
                 default_channels: list[str] | None = None, tz=pytz.utc):
        self.store = store
        self.clock = clock
        self.locks = locks or AppointmentLocks()
        self.default_offsets_minutes = list(default_offsets_minutes or DEFAULT_OFFSETS_MINUTES)
        self.default_channels = list(default_channels or ["log"])
        self.tz = tz

    def plan_for(
        self,
        appointment_id: str,
        date: str,
        time: str,
        channels: list[str] | None = None,
        offsets_minutes: list[int] | None = None,
        now: datetime | None = None,
    ) -> ReminderPlan:
        """Compute a plan for an appointment at date+time. Writes nothing.

        Offsets whose firing time is not in the future are dropped, and a
        (fire_at, channel) pair appears at most once.
        """
        try:
            appointment_at = appointment_datetime(date, time, self.tz)
        except ValueError as e:
            raise MissingDataError(f"Appointment {appointment_id}: {e}") from e
        now = to_utc(now or self.clock.now())
        channels = list(dict.fromkeys(channels or self.default_channels))
        if offsets_minutes is None:
            offsets_minutes = self.default_offsets_minutes
        offsets = sorted(set(offsets_minutes), reverse=True)
        plan_id = str(uuid.uuid4())

        entries = []
        seen = set()
        for minutes in offsets:
            fire_at = appointment_at - timedelta(minutes=minutes)
            if fire_at <= now:
                logger.debug("Skipping %d-minute reminder for %s: already past", minutes, appointment_id)
                continue
            for channel in channels:
                if (fire_at, channel) in seen:
                    continue
                seen.add((fire_at, channel))
                entries.append(ReminderEntry(
                    entry_id=str(uuid.uuid4()),
                    appointment_id=appointment_id,
                    plan_id=plan_id,
                    label=offset_label(minutes),
                    offset_minutes=minutes,
                    fire_at=fire_at,
                    channel=channel,
                ))

        entries.sort(key=lambda e: (e.fire_at, e.channel))
        return ReminderPlan(
            plan_id=plan_id,
            appointment_id=appointment_id,
            appointment_at=appointment_at,
            offsets_minutes=offsets,
            channels=channels,
            created_at=now,
            entries=entries,
        )

    async def replace_plan(
        self,
        appointment_id: str,
        new_date: str,
        new_time: str,
        channels: list[str] | None = None,
        offsets_minutes: list[int] | None = None,
    ) -> ReminderPlan:
        """Cancel the previous plan's pending reminders and install a new plan.

        Channels and offsets default to the previous plan's, so a reschedule
        keeps the reminder preferences the appointment was booked with.
        """
        async with self.locks.hold(appointment_id):
            previous = self.store.get_plan(appointment_id)
            if previous is not None:
                channels = channels or previous.channels
                if offsets_minutes is None:
                    offsets_minutes = previous.offsets_minutes

            plan = self.plan_for(appointment_id, new_date, new_time, channels, offsets_minutes)
            with self.store.transaction():
                cancelled = self._cancel_pending(appointment_id)
                self.store.save_plan(plan)

        logger.info(
            "Reminder plan for %s replaced: %d cancelled, %d scheduled",
            appointment_id, len(cancelled), len(plan.entries),
        )
        return plan

    async def cancel_pending(self, appointment_id: str) -> list[ReminderEntry]:
        """Mark every pending reminder of an appointment cancelled."""
        async with self.locks.hold(appointment_id):
            with self.store.transaction():
                return self._cancel_pending(appointment_id)

    def get_plan(self, appointment_id: str) -> ReminderPlan | None:
        return self.store.get_plan(appointment_id)

    def get_entry(self, entry_id: str) -> ReminderEntry | None:
        return self.store.get_entry(entry_id)

    def entries(self, appointment_id: str | None = None, state: ReminderState | None = None) -> list[ReminderEntry]:
        return self.store.entries(appointment_id, state)

    def mark_sent(self, entry: ReminderEntry) -> None:
        self.store.set_entry_state(entry.entry_id, ReminderState.SENT, sent_at=to_utc(self.clock.now()))

    def mark_failed(self, entry: ReminderEntry, error: str) -> None:
        self.store.set_entry_state(entry.entry_id, ReminderState.FAILED, error=error)

    def purge(self, appointment_id: str) -> None:
        self.store.purge(appointment_id)

    def _cancel_pending(self, appointment_id: str) -> list[ReminderEntry]:
        pending = self.store.entries(appointment_id, ReminderState.PENDING)
        for entry in pending:
            self.store.set_entry_state(entry.entry_id, ReminderState.CANCELLED)
        return pending
