"""Reminder orchestrator: binds reminder plans to the clock and the channels."""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from pydantic import BaseModel

from appointment_coordinator.errors import NotificationDeliveryError
from appointment_coordinator.locks import AppointmentLocks
from appointment_coordinator.notices import reminder_payload
from appointment_coordinator.ports import ClockPort, NotificationChannel
from appointment_coordinator.reminder_planner import ReminderPlanner
from appointment_coordinator.store import ReminderEntry, ReminderPlan, ReminderState
from appointment_coordinator.timeutil import to_utc

logger = logging.getLogger(__name__)


class ReminderStatistics(BaseModel):
    """Reminder counts across every plan, superseded ones included."""
    sent: int = 0
    pending: int = 0
    failed: int = 0
    cancelled: int = 0
    total: int = 0


class ReminderOrchestrator:
    """Arms and cancels reminder timers and delivers reminders when they fire."""

    def __init__(self, planner: ReminderPlanner, clock: ClockPort, channels: dict[str, NotificationChannel],
                 locks: AppointmentLocks | None = None, tz=None):
        self.planner = planner
        self.clock = clock
        self.channels = channels
        self.locks = locks or planner.locks
        self.tz = tz
        # entry_id -> clock token
        self._timers: dict[str, str] = {}
        # appointment_id -> entry ids with a live timer
        self._armed: dict[str, set[str]] = {}
        # entry ids whose channel send is in progress
        self._sending: set[str] = set()
        self.on_delivery: Callable[[ReminderEntry], object] | None = None

    async def arm(self, plan: ReminderPlan) -> int:
        """Register a timer for each pending entry that has none yet."""
        armed = 0
        async with self.locks.hold(plan.appointment_id):
            for entry in plan.pending_entries():
                if self._is_live(entry.entry_id):
                    continue
                self._arm_entry(entry, entry.fire_at)
                armed += 1
        if armed:
            logger.info("Armed %d reminders for %s", armed, plan.appointment_id)
        return armed

    async def cancel_all(self, appointment_id: str) -> int:
        """Cancel live timers and pending entries. A no-op when nothing is armed."""
        async with self.locks.hold(appointment_id):
            dropped = self._disarm(appointment_id)
            cancelled = await self.planner.cancel_pending(appointment_id)
        if dropped or cancelled:
            logger.info("Cancelled %d reminders for %s", len(cancelled), appointment_id)
        return len(cancelled)

    async def resync(self, appointment_id: str) -> int:
        """Make live timers match exactly the pending entries in the store."""
        async with self.locks.hold(appointment_id):
            self._disarm(appointment_id)
            armed = 0
            for entry in self.planner.entries(appointment_id, ReminderState.PENDING):
                if entry.entry_id in self._sending:
                    continue
                self._arm_entry(entry, entry.fire_at)
                armed += 1
        return armed

    async def recover(self, grace: timedelta) -> int:
        """Re-arm pending reminders after a restart.

        Reminders that came due while the process was down are sent right
        away if they are less than ``grace`` late, otherwise marked failed.
        """
        now = to_utc(self.clock.now())
        rearmed = 0
        for entry in self.planner.entries(state=ReminderState.PENDING):
            if self._is_live(entry.entry_id):
                continue
            async with self.locks.hold(entry.appointment_id):
                if entry.fire_at < now - grace:
                    self.planner.mark_failed(entry, "missed while offline")
                    logger.warning("Reminder %s for %s missed while offline", entry.entry_id, entry.appointment_id)
                    continue
                self._arm_entry(entry, max(entry.fire_at, now))
                rearmed += 1
        logger.info("Recovered %d pending reminders", rearmed)
        return rearmed

    def get_statistics(self) -> ReminderStatistics:
        stats = ReminderStatistics()
        for entry in self.planner.entries():
            setattr(stats, entry.state.value, getattr(stats, entry.state.value) + 1)
            stats.total += 1
        return stats

    def armed_count(self, appointment_id: str | None = None) -> int:
        if appointment_id is None:
            return len(self._timers)
        return len(self._armed.get(appointment_id, ()))

    # Private helpers

    def _arm_entry(self, entry: ReminderEntry, when: datetime) -> None:
        async def fire():
            await self._fire(entry.appointment_id, entry.entry_id)

        token = self.clock.schedule_at(when, fire)
        self._timers[entry.entry_id] = token
        self._armed.setdefault(entry.appointment_id, set()).add(entry.entry_id)

    def _disarm(self, appointment_id: str) -> int:
        entry_ids = self._armed.pop(appointment_id, set())
        for entry_id in entry_ids:
            token = self._timers.pop(entry_id, None)
            if token is not None:
                self.clock.cancel(token)
        return len(entry_ids)

    def _forget(self, appointment_id: str, entry_id: str) -> None:
        self._timers.pop(entry_id, None)
        armed = self._armed.get(appointment_id)
        if armed is not None:
            armed.discard(entry_id)
            if not armed:
                del self._armed[appointment_id]

    def _is_live(self, entry_id: str) -> bool:
        return entry_id in self._timers or entry_id in self._sending

    async def _fire(self, appointment_id: str, entry_id: str) -> None:
        async with self.locks.hold(appointment_id):
            self._forget(appointment_id, entry_id)
            entry = self.planner.get_entry(entry_id)
            if entry is None or entry.state != ReminderState.PENDING:
                logger.debug("Reminder %s no longer pending, not sending", entry_id)
                return

            channel = self.channels.get(entry.channel)
            if channel is None:
                self.planner.mark_failed(entry, f"unknown channel {entry.channel}")
                logger.error("Reminder %s uses unknown channel %s", entry_id, entry.channel)
            else:
                payload = reminder_payload(entry, self._appointment_at(entry))
                self._sending.add(entry_id)

        if channel is not None:
            # The appointment lock is not held while the channel sends
            try:
                error = await self._send(channel, entry, payload)
                async with self.locks.hold(appointment_id):
                    self._record_outcome(entry_id, error)
            finally:
                self._sending.discard(entry_id)

        await self._notify(entry_id)

    def _appointment_at(self, entry: ReminderEntry) -> datetime | None:
        plan = self.planner.get_plan(entry.appointment_id)
        if plan is None or plan.plan_id != entry.plan_id:
            return None
        if self.tz is not None:
            return plan.appointment_at.astimezone(self.tz)
        return plan.appointment_at

    async def _send(self, channel, entry: ReminderEntry, payload: dict) -> str | None:
        """Deliver one reminder. Returns the error text, or None when delivered."""
        appointment_id, entry_id = entry.appointment_id, entry.entry_id
        try:
            delivered = await channel.send(appointment_id, payload)
        except NotificationDeliveryError as e:
            logger.error("Reminder %s for %s failed: %s", entry_id, appointment_id, e)
            return str(e)
        except Exception as e:
            logger.exception("Channel %s raised while sending reminder %s", entry.channel, entry_id)
            return f"{type(e).__name__}: {e}"

        if not delivered:
            logger.error("Reminder %s for %s rejected by %s", entry_id, appointment_id, entry.channel)
            return "channel reported failure"
        logger.info("Reminder %s sent for %s via %s", entry_id, appointment_id, entry.channel)
        return None

    def _record_outcome(self, entry_id: str, error: str | None) -> None:
        """Store the result of a send.

        A delivered reminder is recorded as sent even if it was cancelled while
        the channel was sending. A failure does not overwrite a state set in
        the meantime.
        """
        entry = self.planner.get_entry(entry_id)
        if entry is None:
            logger.info("Reminder %s was purged while sending", entry_id)
            return
        if error is None:
            if entry.state != ReminderState.PENDING:
                logger.warning("Reminder %s was %s while sending; it was delivered", entry_id, entry.state.value)
            self.planner.mark_sent(entry)
        elif entry.state == ReminderState.PENDING:
            self.planner.mark_failed(entry, error)
        else:
            logger.info("Reminder %s failed after it was %s", entry_id, entry.state.value)

    async def _notify(self, entry_id: str) -> None:
        if self.on_delivery is None:
            return
        entry = self.planner.get_entry(entry_id)
        if entry is not None:
            result = self.on_delivery(entry)
            if hasattr(result, "__await__"):
                await result
