from .connection import Database
from .memory import MemoryReminderStore, MemoryStatusStore
from .reminder_repository import ReminderEntry, ReminderPlan, ReminderState, SqliteReminderStore
from .status_repository import AppointmentSchedule, RescheduleDetails, SqliteStatusStore, StatusRecord

__all__ = [
    "Database",
    "SqliteStatusStore",
    "SqliteReminderStore",
    "MemoryStatusStore",
    "MemoryReminderStore",
    "StatusRecord",
    "RescheduleDetails",
    "AppointmentSchedule",
    "ReminderPlan",
    "ReminderEntry",
    "ReminderState",
]
