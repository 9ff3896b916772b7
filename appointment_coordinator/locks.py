"""Per-appointment serialization."""

import asyncio
from contextlib import asynccontextmanager


class AppointmentLocks:
    """One asyncio lock per appointment id, re-entrant for the task holding it.

    The coordinator holds an appointment's lock across engine, planner and
    orchestrator calls that also take it, so nested acquisition by the owning
    task passes straight through.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._owners: dict[str, asyncio.Task] = {}

    @asynccontextmanager
    async def hold(self, appointment_id: str):
        task = asyncio.current_task()
        if task is not None and self._owners.get(appointment_id) is task:
            yield
            return

        lock = self._locks.setdefault(appointment_id, asyncio.Lock())
        async with lock:
            self._owners[appointment_id] = task
            try:
                yield
            finally:
                self._owners.pop(appointment_id, None)

    def discard(self, appointment_id: str) -> None:
        """Forget an idle lock once its appointment is purged."""
        lock = self._locks.get(appointment_id)
        if lock is not None and not lock.locked():
            del self._locks[appointment_id]
