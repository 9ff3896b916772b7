"""Status repository: append-only history plus the current-status projection."""

from dataclasses import dataclass
from datetime import datetime, timezone

from appointment_coordinator.state_machine import Actor, AppointmentStatus

from .connection import Database


@dataclass(frozen=True)
class RescheduleDetails:
    new_date: str
    new_time: str


@dataclass(frozen=True)
class StatusRecord:
    appointment_id: str
    previous_status: AppointmentStatus
    new_status: AppointmentStatus
    actor: Actor
    timestamp: datetime
    reason: str | None = None
    reschedule_details: RescheduleDetails | None = None
    sequence: int = 0


@dataclass
class AppointmentSchedule:
    appointment_id: str
    date: str | None = None
    time: str | None = None


class SqliteStatusStore:
    """Durable status store backed by SQLite."""

    def __init__(self, db: Database):
        self.db = db

    def transaction(self):
        return self.db.transaction()

    # Appointment registry

    def register(self, appointment_id: str, date: str | None = None, time: str | None = None) -> AppointmentSchedule:
        """Add an appointment to the registry, keeping any date/time already known."""
        now = _now_iso()
        with self.db.transaction() as conn:
            conn.execute(
                """INSERT INTO appointments (id, date, time, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       date = COALESCE(excluded.date, appointments.date),
                       time = COALESCE(excluded.time, appointments.time),
                       updated_at = excluded.updated_at""",
                (appointment_id, date, time, now, now),
            )
        return self.get_schedule(appointment_id)

    def get_schedule(self, appointment_id: str) -> AppointmentSchedule | None:
        with self.db.reading() as cursor:
            cursor.execute("SELECT id, date, time FROM appointments WHERE id = ?", (appointment_id,))
            row = cursor.fetchone()
        if not row:
            return None
        return AppointmentSchedule(appointment_id=row["id"], date=row["date"], time=row["time"])

    # History

    def append(self, record: StatusRecord) -> StatusRecord:
        """Append a record and move the projection in one transaction.

        The sequence number is assigned here: one past the appointment's
        newest record.
        """
        with self.db.transaction() as conn:
            now = _now_iso()
            conn.execute(
                "INSERT OR IGNORE INTO appointments (id, created_at, updated_at) VALUES (?, ?, ?)",
                (record.appointment_id, now, now),
            )
            row = conn.execute(
                "SELECT COALESCE(MAX(sequence), 0) AS last FROM status_history WHERE appointment_id = ?",
                (record.appointment_id,),
            ).fetchone()
            sequence = row["last"] + 1
            details = record.reschedule_details
            recorded_at = record.timestamp.astimezone(timezone.utc).isoformat()

            conn.execute(
                """INSERT INTO status_history
                   (appointment_id, sequence, previous_status, new_status, actor,
                    reason, new_date, new_time, recorded_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.appointment_id, sequence, record.previous_status.value,
                    record.new_status.value, record.actor.value, record.reason,
                    details.new_date if details else None,
                    details.new_time if details else None,
                    recorded_at,
                ),
            )
            conn.execute(
                """INSERT INTO status_current (appointment_id, status, sequence, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(appointment_id) DO UPDATE SET
                       status = excluded.status,
                       sequence = excluded.sequence,
                       updated_at = excluded.updated_at""",
                (record.appointment_id, record.new_status.value, sequence, recorded_at),
            )

        return StatusRecord(
            appointment_id=record.appointment_id,
            previous_status=record.previous_status,
            new_status=record.new_status,
            actor=record.actor,
            timestamp=record.timestamp,
            reason=record.reason,
            reschedule_details=details,
            sequence=sequence,
        )

    def current(self, appointment_id: str) -> AppointmentStatus | None:
        with self.db.reading() as cursor:
            cursor.execute("SELECT status FROM status_current WHERE appointment_id = ?", (appointment_id,))
            row = cursor.fetchone()
        return AppointmentStatus(row["status"]) if row else None

    def current_all(self) -> dict[str, AppointmentStatus]:
        """Current status of every known appointment (pending when never changed)."""
        with self.db.reading() as cursor:
            cursor.execute(
                """SELECT a.id, c.status FROM appointments a
                   LEFT JOIN status_current c ON c.appointment_id = a.id"""
            )
            rows = cursor.fetchall()
        return {
            row["id"]: AppointmentStatus(row["status"]) if row["status"] else AppointmentStatus.PENDING
            for row in rows
        }

    def history(self, appointment_id: str) -> list[StatusRecord]:
        with self.db.reading() as cursor:
            cursor.execute(
                "SELECT * FROM status_history WHERE appointment_id = ? ORDER BY sequence",
                (appointment_id,),
            )
            rows = cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    def recent(self, limit: int = 10) -> list[StatusRecord]:
        """Newest records across all appointments; ties go to the later write."""
        with self.db.reading() as cursor:
            cursor.execute(
                "SELECT * FROM status_history ORDER BY recorded_at DESC, rowid DESC LIMIT ?",
                (limit,),
            )
            rows = cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    def latest_records(self) -> list[StatusRecord]:
        """The newest record of each appointment that has any history."""
        with self.db.reading() as cursor:
            cursor.execute(
                """SELECT h.* FROM status_history h
                   JOIN (SELECT appointment_id, MAX(sequence) AS last
                         FROM status_history GROUP BY appointment_id) m
                     ON m.appointment_id = h.appointment_id AND m.last = h.sequence
                   ORDER BY h.recorded_at, h.rowid"""
            )
            rows = cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    def rebuild_current(self) -> int:
        """Recompute status_current from status_history. Returns rows written."""
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM status_current")
            cursor = conn.execute(
                """INSERT INTO status_current (appointment_id, status, sequence, updated_at)
                   SELECT h.appointment_id, h.new_status, h.sequence, h.recorded_at
                   FROM status_history h
                   JOIN (SELECT appointment_id, MAX(sequence) AS last
                         FROM status_history GROUP BY appointment_id) m
                     ON m.appointment_id = h.appointment_id AND m.last = h.sequence"""
            )
            return cursor.rowcount

    def purge(self, appointment_id: str) -> None:
        """Remove everything known about an appointment (case closure)."""
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM status_current WHERE appointment_id = ?", (appointment_id,))
            conn.execute("DELETE FROM status_history WHERE appointment_id = ?", (appointment_id,))
            conn.execute("DELETE FROM appointments WHERE id = ?", (appointment_id,))

    # Private helpers

    def _row_to_record(self, row) -> StatusRecord:
        """Convert a database row to a StatusRecord."""
        details = None
        if row["new_date"] is not None:
            details = RescheduleDetails(new_date=row["new_date"], new_time=row["new_time"])
        return StatusRecord(
            appointment_id=row["appointment_id"],
            previous_status=AppointmentStatus(row["previous_status"]),
            new_status=AppointmentStatus(row["new_status"]),
            actor=Actor(row["actor"]),
            timestamp=datetime.fromisoformat(row["recorded_at"]),
            reason=row["reason"],
            reschedule_details=details,
            sequence=row["sequence"],
        )


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
