"""Coordination facade: the single entry point for UI code and collaborators."""

import inspect
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta

from pydantic import BaseModel, Field, field_validator

from appointment_coordinator.channels import build_channels
from appointment_coordinator.config import EngineSettings
from appointment_coordinator.errors import TransitionError
from appointment_coordinator.locks import AppointmentLocks
from appointment_coordinator.notices import StatusNotice, describe_status_change
from appointment_coordinator.ports import (
    APSchedulerClock,
    ClockPort,
    NotificationChannel,
    ReminderStore,
    StatusStore,
)
from appointment_coordinator.reminder_orchestrator import ReminderOrchestrator, ReminderStatistics
from appointment_coordinator.reminder_planner import ReminderPlanner
from appointment_coordinator.state_machine import Actor, AppointmentStatus
from appointment_coordinator.status_engine import StatusEngine
from appointment_coordinator.store import (
    AppointmentSchedule,
    Database,
    ReminderEntry,
    ReminderPlan,
    ReminderState,
    RescheduleDetails,
    SqliteReminderStore,
    SqliteStatusStore,
    StatusRecord,
)
from appointment_coordinator.timeutil import to_utc

logger = logging.getLogger(__name__)

# Patient answers from the appointment confirmation screen
PATIENT_RESPONSES = {
    "confirm": AppointmentStatus.CONFIRMED,
    "decline": AppointmentStatus.DECLINED,
    "reschedule": AppointmentStatus.RESCHEDULE_REQUESTED,
}


class ReminderPreferences(BaseModel):
    """Which reminders an appointment gets and how they are delivered."""

    enable_24_hour_reminder: bool = Field(True, description="Remind a day before")
    enable_2_hour_reminder: bool = Field(True, description="Remind two hours before")
    enable_30_minute_reminder: bool = Field(False, description="Remind half an hour before")
    custom_reminder_minutes: list[int] = Field(
        default_factory=list, description="Extra reminders, in minutes before the appointment"
    )
    channels: list[str] | None = Field(None, description="Channel names; settings default when empty")

    @field_validator("custom_reminder_minutes")
    @classmethod
    def positive_minutes(cls, v):
        if any(m <= 0 for m in v):
            raise ValueError("Custom reminder times must be positive minutes")
        return v

    def offsets_minutes(self) -> list[int]:
        offsets = set(self.custom_reminder_minutes)
        if self.enable_24_hour_reminder:
            offsets.add(24 * 60)
        if self.enable_2_hour_reminder:
            offsets.add(2 * 60)
        if self.enable_30_minute_reminder:
            offsets.add(30)
        return sorted(offsets, reverse=True)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a status update. Rejections carry the unchanged status."""
    ok: bool
    appointment_id: str
    status: AppointmentStatus
    record: StatusRecord | None = None
    plan: ReminderPlan | None = None
    error: str | None = None


@dataclass(frozen=True)
class EngineEvent:
    """Pushed to subscribers. kind: status_changed, reminder_sent or reminder_failed."""
    kind: str
    appointment_id: str
    record: StatusRecord | None = None
    notice: StatusNotice | None = None
    reminder: ReminderEntry | None = None


class DashboardView(BaseModel):
    status_summary: dict[AppointmentStatus, int]
    needing_attention: list[StatusRecord]
    reminder_statistics: ReminderStatistics
    recent_updates: list[StatusRecord] = Field(default_factory=list)


class AppointmentCoordinator:
    """Composes the status engine and the reminder components.

    Every write for one appointment runs under that appointment's lock and
    inside one store transaction, so a status change and its reminder
    replanning succeed or fail together.
    """

    def __init__(self, status_store: StatusStore, reminder_store: ReminderStore, clock: ClockPort,
                 channels: dict[str, NotificationChannel], settings: EngineSettings | None = None):
        self.settings = settings or EngineSettings()
        self.status_store = status_store
        self.reminder_store = reminder_store
        self.clock = clock
        self.locks = AppointmentLocks()
        self.engine = StatusEngine(
            status_store, clock, self.locks,
            allow_system_bypass=self.settings.allow_system_cancel,
            tz=self.settings.tz,
        )
        self.planner = ReminderPlanner(
            reminder_store, clock, self.locks,
            default_offsets_minutes=self.settings.reminder_offsets_minutes,
            default_channels=self.settings.reminder_channels,
            tz=self.settings.tz,
        )
        self.orchestrator = ReminderOrchestrator(self.planner, clock, channels, self.locks, tz=self.settings.tz)
        self.orchestrator.on_delivery = self._on_delivery
        self._listeners: list[Callable] = []
        self._database: Database | None = None

    @classmethod
    def from_settings(cls, settings: EngineSettings, clock=None, channels: dict | None = None):
        """Build a coordinator on SQLite with the APScheduler clock."""
        db = Database(settings.db_path)
        db.init_database()
        coordinator = cls(
            SqliteStatusStore(db),
            SqliteReminderStore(db),
            clock or APSchedulerClock(),
            channels if channels is not None else build_channels(settings),
            settings,
        )
        coordinator._database = db
        return coordinator

    async def start(self) -> int:
        """Start the clock and re-arm reminders persisted by a previous run."""
        self.engine.rebuild_projection()
        if hasattr(self.clock, "start") and not getattr(self.clock, "running", False):
            self.clock.start()
        grace = timedelta(minutes=self.settings.missed_reminder_grace_minutes)
        return await self.orchestrator.recover(grace)

    async def shutdown(self) -> None:
        if hasattr(self.clock, "shutdown"):
            result = self.clock.shutdown()
            if inspect.isawaitable(result):
                await result
        if self._database is not None:
            self._database.close()

    # Status updates

    async def update_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus | str,
        actor: Actor | str,
        reason: str | None = None,
        reschedule_details: RescheduleDetails | dict | None = None,
    ) -> TransitionResult:
        """Apply a status change and keep the reminders in line with it.

        Validation failures come back as a rejected result. Store and
        scheduling failures roll everything back and propagate.
        """
        try:
            new_status = AppointmentStatus(new_status)
            actor = Actor(actor)
        except ValueError as e:
            logger.warning("Rejected update for %s: %s", appointment_id, e)
            return self._rejected(appointment_id, str(e))
        details = _reschedule_details(reschedule_details)

        async with self.locks.hold(appointment_id):
            try:
                async with self._writing(appointment_id):
                    record = await self.engine.apply_transition(
                        appointment_id, new_status, actor, reason, details
                    )
                    plan = await self._sync_reminders(record)
            except TransitionError as e:
                return self._rejected(appointment_id, str(e))

        await self._publish(EngineEvent(
            "status_changed", appointment_id, record=record, notice=describe_status_change(record)
        ))
        return TransitionResult(ok=True, appointment_id=appointment_id, status=record.new_status,
                                record=record, plan=plan)

    async def process_patient_response(
        self,
        appointment_id: str,
        response: str,
        reason: str | None = None,
        reschedule_details: RescheduleDetails | dict | None = None,
    ) -> TransitionResult:
        """Apply a patient's confirm / decline / reschedule answer."""
        new_status = PATIENT_RESPONSES.get(response)
        if new_status is None:
            logger.warning("Unknown patient response %r for %s", response, appointment_id)
            return self._rejected(appointment_id, f"Unknown patient response: {response}")
        return await self.update_status(appointment_id, new_status, Actor.PATIENT, reason, reschedule_details)

    async def mark_completed(self, appointment_id: str, notes: str | None = None) -> TransitionResult:
        return await self.update_status(appointment_id, AppointmentStatus.COMPLETED, Actor.PROVIDER, notes)

    async def cancel_appointment(
        self, appointment_id: str, reason: str, cancelled_by: Actor | str = Actor.PROVIDER
    ) -> TransitionResult:
        return await self.update_status(appointment_id, AppointmentStatus.CANCELLED, cancelled_by, reason)

    # Appointment lifecycle and reminders

    async def initialize(
        self,
        appointment_id: str,
        date: str | None = None,
        time: str | None = None,
        preferences: ReminderPreferences | None = None,
    ) -> AppointmentSchedule:
        """Register an appointment as pending, arming reminders when date and time are known."""
        async with self.locks.hold(appointment_id):
            async with self._writing(appointment_id):
                schedule = self.engine.register(appointment_id, date, time)
                if schedule.date and schedule.time:
                    await self._replan(appointment_id, schedule.date, schedule.time, preferences)
        logger.info("Appointment %s initialized", appointment_id)
        return schedule

    async def schedule_reminders(
        self,
        appointment_id: str,
        date: str,
        time: str,
        preferences: ReminderPreferences | None = None,
    ) -> ReminderPlan | None:
        return await self.reschedule_appointment_reminders(appointment_id, date, time, preferences)

    async def reschedule_appointment_reminders(
        self,
        appointment_id: str,
        new_date: str,
        new_time: str,
        preferences: ReminderPreferences | None = None,
    ) -> ReminderPlan | None:
        """Move an appointment's reminders to a new date/time without a status change.

        Closed appointments get no reminders; None is returned for them.
        """
        async with self.locks.hold(appointment_id):
            if self.engine.get_current_status(appointment_id).is_terminal:
                logger.warning("Not planning reminders for closed appointment %s", appointment_id)
                return None
            async with self._writing(appointment_id):
                self.engine.register(appointment_id, new_date, new_time)
                return await self._replan(appointment_id, new_date, new_time, preferences)

    async def cancel_appointment_reminders(self, appointment_id: str) -> int:
        async with self.locks.hold(appointment_id):
            async with self._writing(appointment_id):
                return await self.orchestrator.cancel_all(appointment_id)

    async def purge(self, appointment_id: str) -> None:
        """Forget an appointment entirely. Used on case closure."""
        async with self.locks.hold(appointment_id):
            async with self._writing(appointment_id):
                await self.orchestrator.cancel_all(appointment_id)
                self.planner.purge(appointment_id)
                self.engine.purge(appointment_id)
        self.locks.discard(appointment_id)
        logger.info("Appointment %s purged", appointment_id)

    # Read models

    def get_appointment_status(self, appointment_id: str) -> AppointmentStatus:
        return self.engine.get_current_status(appointment_id)

    def get_appointment_status_history(self, appointment_id: str) -> list[StatusRecord]:
        return self.engine.get_history(appointment_id)

    def get_recent_status_updates(self, limit: int = 10) -> list[StatusRecord]:
        return self.engine.get_recent_updates(limit)

    def get_status_updates_needing_attention(self) -> list[StatusRecord]:
        return self.engine.get_needing_attention()

    def get_status_summary(self) -> dict[AppointmentStatus, int]:
        return self.engine.get_status_summary()

    def get_reminder_statistics(self) -> ReminderStatistics:
        return self.orchestrator.get_statistics()

    def get_reminder_plan(self, appointment_id: str) -> ReminderPlan | None:
        return self.planner.get_plan(appointment_id)

    def get_upcoming_reminders(self, appointment_id: str) -> list[ReminderEntry]:
        now = to_utc(self.clock.now())
        return [
            e for e in self.planner.entries(appointment_id, ReminderState.PENDING)
            if e.fire_at > now
        ]

    def get_reminder_history(self, limit: int = 20) -> list[ReminderEntry]:
        sent = self.planner.entries(state=ReminderState.SENT)
        sent.sort(key=lambda e: e.sent_at, reverse=True)
        return sent[:limit]

    def get_dashboard_view(self, recent_limit: int = 10) -> DashboardView:
        return DashboardView(
            status_summary=self.get_status_summary(),
            needing_attention=self.get_status_updates_needing_attention(),
            reminder_statistics=self.get_reminder_statistics(),
            recent_updates=self.get_recent_status_updates(recent_limit),
        )

    # Push subscription

    def subscribe(self, listener: Callable[[EngineEvent], object]) -> Callable[[], None]:
        """Register a listener for engine events. Returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Private helpers

    @asynccontextmanager
    async def _writing(self, appointment_id: str):
        """One transaction over both stores; timers follow the store on rollback.

        The body must not suspend on anything but re-entrant lock holds.
        """
        try:
            with self.status_store.transaction(), self.reminder_store.transaction():
                yield
        except TransitionError:
            await self.orchestrator.resync(appointment_id)
            raise
        except Exception:
            logger.error("Rolling back changes to appointment %s", appointment_id, exc_info=True)
            await self.orchestrator.resync(appointment_id)
            raise

    def _rejected(self, appointment_id: str, error: str) -> TransitionResult:
        return TransitionResult(
            ok=False,
            appointment_id=appointment_id,
            status=self.engine.get_current_status(appointment_id),
            error=error,
        )

    async def _sync_reminders(self, record: StatusRecord) -> ReminderPlan | None:
        appointment_id = record.appointment_id
        if record.new_status == AppointmentStatus.RESCHEDULED:
            details = record.reschedule_details
            self.engine.register(appointment_id, details.new_date, details.new_time)
            return await self._replan(appointment_id, details.new_date, details.new_time)
        if record.new_status.is_terminal:
            await self.orchestrator.cancel_all(appointment_id)
        return None

    async def _replan(
        self,
        appointment_id: str,
        date: str,
        time: str,
        preferences: ReminderPreferences | None = None,
    ) -> ReminderPlan:
        channels = offsets = None
        if preferences is not None:
            channels = preferences.channels
            offsets = preferences.offsets_minutes()
        await self.orchestrator.cancel_all(appointment_id)
        plan = await self.planner.replace_plan(appointment_id, date, time, channels, offsets)
        await self.orchestrator.arm(plan)
        return plan

    async def _on_delivery(self, entry: ReminderEntry) -> None:
        if entry.state not in (ReminderState.SENT, ReminderState.FAILED):
            return
        kind = "reminder_sent" if entry.state == ReminderState.SENT else "reminder_failed"
        await self._publish(EngineEvent(kind, entry.appointment_id, reminder=entry))

    async def _publish(self, event: EngineEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Listener %r failed on %s event", listener, event.kind)


def _reschedule_details(value) -> RescheduleDetails | None:
    if value is None or isinstance(value, RescheduleDetails):
        return value
    new_date = value.get("new_date") or value.get("newDate")
    new_time = value.get("new_time") or value.get("newTime")
    if new_date is None and new_time is None:
        return None
    return RescheduleDetails(new_date=new_date, new_time=new_time)
