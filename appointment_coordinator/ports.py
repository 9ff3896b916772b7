"""Interfaces the engine needs from its host, and the APScheduler clock."""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from appointment_coordinator.state_machine import AppointmentStatus
from appointment_coordinator.store import (
    AppointmentSchedule,
    ReminderEntry,
    ReminderPlan,
    ReminderState,
    StatusRecord,
)

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class ClockPort(Protocol):
    """Runs a callback at a point in time."""

    def now(self) -> datetime: ...

    def schedule_at(self, when: datetime, callback: TimerCallback) -> str: ...

    def cancel(self, token: str) -> None: ...


class NotificationChannel(Protocol):
    """Delivers a reminder. Returns False or raises NotificationDeliveryError on failure."""

    async def send(self, target: str, payload: dict[str, Any]) -> bool: ...


class StatusStore(Protocol):
    def transaction(self): ...
    def register(self, appointment_id: str, date: str | None = None, time: str | None = None) -> AppointmentSchedule: ...
    def get_schedule(self, appointment_id: str) -> AppointmentSchedule | None: ...
    def append(self, record: StatusRecord) -> StatusRecord: ...
    def current(self, appointment_id: str) -> AppointmentStatus | None: ...
    def current_all(self) -> dict[str, AppointmentStatus]: ...
    def history(self, appointment_id: str) -> list[StatusRecord]: ...
    def recent(self, limit: int = 10) -> list[StatusRecord]: ...
    def latest_records(self) -> list[StatusRecord]: ...
    def rebuild_current(self) -> int: ...
    def purge(self, appointment_id: str) -> None: ...


class ReminderStore(Protocol):
    def transaction(self): ...
    def save_plan(self, plan: ReminderPlan) -> ReminderPlan: ...
    def get_plan(self, appointment_id: str) -> ReminderPlan | None: ...
    def get_entry(self, entry_id: str) -> ReminderEntry | None: ...
    def set_entry_state(
        self, entry_id: str, state: ReminderState, sent_at: datetime | None = None, error: str | None = None
    ) -> None: ...
    def entries(
        self, appointment_id: str | None = None, state: ReminderState | None = None
    ) -> list[ReminderEntry]: ...
    def purge(self, appointment_id: str) -> None: ...


class APSchedulerClock:
    """Clock port backed by APScheduler's asyncio scheduler.

    Each reminder becomes a one-shot job with a DateTrigger. Callbacks are
    coroutines and run on the scheduler's event loop.
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None, misfire_grace_seconds: int = 300):
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self.misfire_grace_seconds = misfire_grace_seconds

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        """Start the scheduler. Must be called with an event loop running."""
        if self._scheduler.running:
            logger.warning("APSchedulerClock already running")
            return
        self._scheduler.start()
        logger.info("APSchedulerClock started")

    async def shutdown(self) -> None:
        """Drop every pending timer and wait until the scheduler has stopped.

        APScheduler 3.11 finishes stopping on a later loop iteration, so
        callers must not release resources the callbacks use before this returns.
        """
        if not self._scheduler.running:
            return
        self._scheduler.remove_all_jobs()
        self._scheduler.shutdown(wait=False)
        while self._scheduler.running:
            await asyncio.sleep(0)
        logger.info("APSchedulerClock stopped")

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def schedule_at(self, when: datetime, callback: TimerCallback) -> str:
        token = str(uuid.uuid4())
        self._scheduler.add_job(
            callback,
            DateTrigger(run_date=max(when, self.now())),
            id=token,
            misfire_grace_time=self.misfire_grace_seconds,
        )
        return token

    def cancel(self, token: str) -> None:
        try:
            self._scheduler.remove_job(token)
        except JobLookupError:
            # One-shot jobs are removed by the scheduler once they have run
            logger.debug("Timer %s already fired or was never scheduled", token)
