"""In-memory stores for tests and single-process use without durability."""

import copy
from contextlib import contextmanager
from dataclasses import replace

from appointment_coordinator.state_machine import AppointmentStatus

from .reminder_repository import ReminderEntry, ReminderPlan, ReminderState
from .status_repository import AppointmentSchedule, StatusRecord


class _Journal:
    """Transactions over a store's mutable state, undone from a change log.

    Writes made through the helpers below are recorded while a transaction is
    open and reverted, newest first, if the outermost transaction fails.
    """

    def __init__(self):
        self._depth = 0
        self._undo: list | None = None

    @contextmanager
    def transaction(self):
        outermost = self._depth == 0
        if outermost:
            self._undo = []
        self._depth += 1
        try:
            yield self
        except BaseException:
            if outermost:
                for undo in reversed(self._undo):
                    undo()
            raise
        finally:
            self._depth -= 1
            if outermost:
                self._undo = None

    def _record(self, undo) -> None:
        if self._undo is not None:
            self._undo.append(undo)

    def _put(self, mapping: dict, key, value) -> None:
        if key in mapping:
            old = mapping[key]
            self._record(lambda: mapping.__setitem__(key, old))
        else:
            self._record(lambda: mapping.pop(key, None))
        mapping[key] = value

    def _drop(self, mapping: dict, key) -> None:
        if key in mapping:
            old = mapping.pop(key)
            self._record(lambda: mapping.__setitem__(key, old))

    def _push(self, items: list, value) -> None:
        items.append(value)
        self._record(items.pop)

    def _rebind(self, name: str, value) -> None:
        old = getattr(self, name)
        self._record(lambda: setattr(self, name, old))
        setattr(self, name, value)


class MemoryStatusStore(_Journal):
    """Status store held in dictionaries."""

    def __init__(self):
        super().__init__()
        self._schedules: dict[str, AppointmentSchedule] = {}
        self._history: dict[str, list[StatusRecord]] = {}
        self._current: dict[str, AppointmentStatus] = {}
        # Every record in write order, for cross-appointment queries
        self._log: list[StatusRecord] = []

    def register(self, appointment_id: str, date: str | None = None, time: str | None = None) -> AppointmentSchedule:
        schedule = self._schedules.get(appointment_id) or AppointmentSchedule(appointment_id)
        schedule = AppointmentSchedule(
            appointment_id,
            date=date if date is not None else schedule.date,
            time=time if time is not None else schedule.time,
        )
        self._put(self._schedules, appointment_id, schedule)
        return replace(schedule)

    def get_schedule(self, appointment_id: str) -> AppointmentSchedule | None:
        schedule = self._schedules.get(appointment_id)
        return replace(schedule) if schedule else None

    def append(self, record: StatusRecord) -> StatusRecord:
        with self.transaction():
            if record.appointment_id not in self._schedules:
                self._put(self._schedules, record.appointment_id, AppointmentSchedule(record.appointment_id))
            if record.appointment_id not in self._history:
                self._put(self._history, record.appointment_id, [])
            history = self._history[record.appointment_id]
            sequence = history[-1].sequence + 1 if history else 1
            stored = replace(record, sequence=sequence)
            self._push(history, stored)
            self._push(self._log, stored)
            self._put(self._current, record.appointment_id, stored.new_status)
        return stored

    def current(self, appointment_id: str) -> AppointmentStatus | None:
        return self._current.get(appointment_id)

    def current_all(self) -> dict[str, AppointmentStatus]:
        return {
            appointment_id: self._current.get(appointment_id, AppointmentStatus.PENDING)
            for appointment_id in self._schedules
        }

    def history(self, appointment_id: str) -> list[StatusRecord]:
        return list(self._history.get(appointment_id, []))

    def recent(self, limit: int = 10) -> list[StatusRecord]:
        # Python's sort is stable, so equal timestamps keep reverse write order
        newest_first = list(reversed(self._log))
        newest_first.sort(key=lambda r: r.timestamp, reverse=True)
        return newest_first[:limit]

    def latest_records(self) -> list[StatusRecord]:
        latest = [history[-1] for history in self._history.values() if history]
        return sorted(latest, key=lambda r: r.timestamp)

    def rebuild_current(self) -> int:
        with self.transaction():
            self._rebind("_current", {
                appointment_id: history[-1].new_status
                for appointment_id, history in self._history.items()
                if history
            })
        return len(self._current)

    def purge(self, appointment_id: str) -> None:
        with self.transaction():
            self._drop(self._schedules, appointment_id)
            self._drop(self._history, appointment_id)
            self._drop(self._current, appointment_id)
            self._rebind("_log", [r for r in self._log if r.appointment_id != appointment_id])


class MemoryReminderStore(_Journal):
    """Reminder store held in dictionaries."""

    def __init__(self):
        super().__init__()
        self._plans: dict[str, ReminderPlan] = {}
        self._entries: dict[str, ReminderEntry] = {}

    def save_plan(self, plan: ReminderPlan) -> ReminderPlan:
        with self.transaction():
            self._put(self._plans, plan.appointment_id, copy.deepcopy(plan))
            for entry in plan.entries:
                self._put(self._entries, entry.entry_id, replace(entry))
        return plan

    def get_plan(self, appointment_id: str) -> ReminderPlan | None:
        plan = self._plans.get(appointment_id)
        if plan is None:
            return None
        plan = copy.deepcopy(plan)
        plan.entries = sorted(
            (replace(e) for e in self._entries.values() if e.plan_id == plan.plan_id),
            key=lambda e: (e.fire_at, e.channel),
        )
        return plan

    def get_entry(self, entry_id: str) -> ReminderEntry | None:
        entry = self._entries.get(entry_id)
        return replace(entry) if entry else None

    def set_entry_state(self, entry_id, state: ReminderState, sent_at=None, error=None) -> None:
        entry = self._entries.get(entry_id)
        if entry is not None:
            self._put(self._entries, entry_id, replace(entry, state=state, sent_at=sent_at, error=error))

    def entries(self, appointment_id: str | None = None, state: ReminderState | None = None) -> list[ReminderEntry]:
        selected = [
            replace(e) for e in self._entries.values()
            if (appointment_id is None or e.appointment_id == appointment_id)
            and (state is None or e.state == state)
        ]
        return sorted(selected, key=lambda e: (e.fire_at, e.channel))

    def purge(self, appointment_id: str) -> None:
        with self.transaction():
            self._drop(self._plans, appointment_id)
            self._rebind("_entries", {k: e for k, e in self._entries.items() if e.appointment_id != appointment_id})
