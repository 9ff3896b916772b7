"""Shared pytest fixtures."""

import asyncio
import itertools
from datetime import datetime, timedelta, timezone

import pytest

from appointment_coordinator.config import EngineSettings
from appointment_coordinator.coordinator import AppointmentCoordinator
from appointment_coordinator.store import (
    Database,
    MemoryReminderStore,
    MemoryStatusStore,
    SqliteReminderStore,
    SqliteStatusStore,
)

START = datetime(2025, 1, 8, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock port driven by hand: timers fire only when the test advances time."""

    def __init__(self, now: datetime = START):
        self._now = now
        self._timers = {}
        self._tokens = itertools.count(1)
        self.fail_next_schedules = 0

    def now(self) -> datetime:
        return self._now

    def schedule_at(self, when, callback):
        if self.fail_next_schedules:
            self.fail_next_schedules -= 1
            raise RuntimeError("timer service unavailable")
        token = f"timer-{next(self._tokens)}"
        self._timers[token] = (when, callback)
        return token

    def cancel(self, token):
        self._timers.pop(token, None)

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    async def advance_to(self, when: datetime) -> None:
        """Move time forward and run every timer that came due, oldest first."""
        self._now = when
        due = sorted(
            ((fire_at, token) for token, (fire_at, _) in self._timers.items() if fire_at <= when),
            key=lambda item: item[0],
        )
        for _, token in due:
            timer = self._timers.pop(token, None)
            if timer is not None:
                await timer[1]()

    async def advance(self, delta: timedelta) -> None:
        await self.advance_to(self._now + delta)


class RecordingChannel:
    """Notification channel that remembers what it was asked to send."""

    def __init__(self, result: bool = True, error: Exception | None = None):
        self.result = result
        self.error = error
        self.sent = []

    async def send(self, target, payload):
        self.sent.append((target, payload))
        if self.error is not None:
            raise self.error
        return self.result


class HeldChannel(RecordingChannel):
    """Recording channel whose sends wait until the test releases them."""

    def __init__(self, result: bool = True, error: Exception | None = None):
        super().__init__(result, error)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def send(self, target, payload):
        self.started.set()
        await self.release.wait()
        return await super().send(target, payload)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def settings(tmp_path):
    return EngineSettings(
        db_path=tmp_path / "appointments.db",
        reminder_offsets_minutes=[24 * 60, 60],
        reminder_channels=["log"],
    )


@pytest.fixture
def db(tmp_path):
    """A fresh SQLite database per test."""
    database = Database(tmp_path / "appointments.db")
    database.init_database()
    yield database
    database.close()


@pytest.fixture(params=["memory", "sqlite"])
def stores(request, tmp_path):
    """(status_store, reminder_store) for each store implementation."""
    if request.param == "memory":
        yield MemoryStatusStore(), MemoryReminderStore()
        return

    database = Database(tmp_path / "stores.db")
    database.init_database()
    yield SqliteStatusStore(database), SqliteReminderStore(database)
    database.close()


@pytest.fixture
def coordinator(stores, clock, channel, settings):
    status_store, reminder_store = stores
    return AppointmentCoordinator(status_store, reminder_store, clock, {"log": channel}, settings)
