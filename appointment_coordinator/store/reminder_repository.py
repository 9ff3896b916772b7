"""Reminder plan repository."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .connection import Database


class ReminderState(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class ReminderEntry:
    entry_id: str
    appointment_id: str
    plan_id: str
    label: str
    offset_minutes: int
    fire_at: datetime
    channel: str
    state: ReminderState = ReminderState.PENDING
    sent_at: datetime | None = None
    error: str | None = None


@dataclass
class ReminderPlan:
    plan_id: str
    appointment_id: str
    appointment_at: datetime
    offsets_minutes: list[int]
    channels: list[str]
    created_at: datetime
    entries: list[ReminderEntry] = field(default_factory=list)

    def pending_entries(self) -> list[ReminderEntry]:
        return [e for e in self.entries if e.state == ReminderState.PENDING]


class SqliteReminderStore:
    """Durable reminder plan store backed by SQLite."""

    def __init__(self, db: Database):
        self.db = db

    def transaction(self):
        return self.db.transaction()

    def save_plan(self, plan: ReminderPlan) -> ReminderPlan:
        """Install a plan as the appointment's active one.

        Entries of the plan it replaces stay in reminder_entries.
        """
        with self.db.transaction() as conn:
            conn.execute(
                """INSERT INTO reminder_plans
                   (appointment_id, plan_id, appointment_at, offsets_minutes, channels, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(appointment_id) DO UPDATE SET
                       plan_id = excluded.plan_id,
                       appointment_at = excluded.appointment_at,
                       offsets_minutes = excluded.offsets_minutes,
                       channels = excluded.channels,
                       created_at = excluded.created_at""",
                (
                    plan.appointment_id, plan.plan_id, plan.appointment_at.isoformat(),
                    json.dumps(plan.offsets_minutes), json.dumps(plan.channels),
                    plan.created_at.isoformat(),
                ),
            )
            conn.executemany(
                """INSERT INTO reminder_entries
                   (id, plan_id, appointment_id, label, offset_minutes, fire_at, channel, state, sent_at, error)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    (
                        e.entry_id, e.plan_id, e.appointment_id, e.label, e.offset_minutes,
                        e.fire_at.isoformat(), e.channel, e.state.value,
                        e.sent_at.isoformat() if e.sent_at else None, e.error,
                    )
                    for e in plan.entries
                ],
            )
        return plan

    def get_plan(self, appointment_id: str) -> ReminderPlan | None:
        with self.db.reading() as cursor:
            cursor.execute("SELECT * FROM reminder_plans WHERE appointment_id = ?", (appointment_id,))
            row = cursor.fetchone()
            if not row:
                return None
            cursor.execute(
                "SELECT * FROM reminder_entries WHERE plan_id = ? ORDER BY fire_at, channel",
                (row["plan_id"],),
            )
            entry_rows = cursor.fetchall()
        return self._row_to_plan(row, [self._row_to_entry(r) for r in entry_rows])

    def get_entry(self, entry_id: str) -> ReminderEntry | None:
        with self.db.reading() as cursor:
            cursor.execute("SELECT * FROM reminder_entries WHERE id = ?", (entry_id,))
            row = cursor.fetchone()
        return self._row_to_entry(row) if row else None

    def set_entry_state(
        self,
        entry_id: str,
        state: ReminderState,
        sent_at: datetime | None = None,
        error: str | None = None,
    ) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE reminder_entries SET state = ?, sent_at = ?, error = ? WHERE id = ?",
                (state.value, sent_at.isoformat() if sent_at else None, error, entry_id),
            )

    def entries(
        self,
        appointment_id: str | None = None,
        state: ReminderState | None = None,
    ) -> list[ReminderEntry]:
        """All entries, superseded plans included, ordered by fire time."""
        query = "SELECT * FROM reminder_entries WHERE 1 = 1"
        params = []
        if appointment_id is not None:
            query += " AND appointment_id = ?"
            params.append(appointment_id)
        if state is not None:
            query += " AND state = ?"
            params.append(state.value)
        query += " ORDER BY fire_at, channel"

        with self.db.reading() as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    def purge(self, appointment_id: str) -> None:
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM reminder_entries WHERE appointment_id = ?", (appointment_id,))
            conn.execute("DELETE FROM reminder_plans WHERE appointment_id = ?", (appointment_id,))

    # Private helpers

    def _row_to_plan(self, row, entries: list[ReminderEntry]) -> ReminderPlan:
        return ReminderPlan(
            plan_id=row["plan_id"],
            appointment_id=row["appointment_id"],
            appointment_at=datetime.fromisoformat(row["appointment_at"]),
            offsets_minutes=json.loads(row["offsets_minutes"]),
            channels=json.loads(row["channels"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            entries=entries,
        )

    def _row_to_entry(self, row) -> ReminderEntry:
        return ReminderEntry(
            entry_id=row["id"],
            appointment_id=row["appointment_id"],
            plan_id=row["plan_id"],
            label=row["label"],
            offset_minutes=row["offset_minutes"],
            fire_at=datetime.fromisoformat(row["fire_at"]),
            channel=row["channel"],
            state=ReminderState(row["state"]),
            sent_at=datetime.fromisoformat(row["sent_at"]) if row["sent_at"] else None,
            error=row["error"],
        )
