"""Engine settings loaded from the environment."""

import os
from pathlib import Path

import pytz
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator

DEFAULT_DB_PATH = Path(__file__).parent / "appointments.db"


class EngineSettings(BaseModel):
    """Configuration for the coordinator and its adapters."""

    db_path: Path = Field(DEFAULT_DB_PATH, description="SQLite database file")
    reminder_offsets_minutes: list[int] = Field(
        default_factory=lambda: [24 * 60, 2 * 60],
        description="Minutes before the appointment at which reminders fire",
    )
    reminder_channels: list[str] = Field(
        default_factory=lambda: ["log"],
        description="Channel names used when a caller does not choose any",
    )
    webhook_url: str | None = Field(None, description="Endpoint for the webhook channel")
    timezone: str = Field("UTC", description="Zone that appointment date/time strings are in")
    missed_reminder_grace_minutes: int = Field(
        60, ge=0, description="How late a reminder may still be sent after a restart"
    )
    allow_system_cancel: bool = Field(
        True, description="Let the system actor force cancellation from any open status"
    )
    log_level: str = Field("INFO", description="Logging level name")

    @field_validator("reminder_offsets_minutes", mode="before")
    @classmethod
    def parse_offsets(cls, v):
        """Accept '1440,120' as well as a list."""
        if isinstance(v, str):
            v = [part for part in v.replace(" ", "").split(",") if part]
        offsets = sorted({int(m) for m in v}, reverse=True)
        if any(m <= 0 for m in offsets):
            raise ValueError("Reminder offsets must be positive minutes")
        return offsets

    @field_validator("reminder_channels", mode="before")
    @classmethod
    def parse_channels(cls, v):
        if isinstance(v, str):
            v = [part.strip() for part in v.split(",") if part.strip()]
        if not v:
            raise ValueError("At least one reminder channel is required")
        return v

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v):
        if v not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, v):
        return v.upper()

    @property
    def tz(self):
        return pytz.timezone(self.timezone)


# Environment variable for each settings field
ENV_VARS = {
    "db_path": "APPOINTMENT_DB_PATH",
    "reminder_offsets_minutes": "REMINDER_OFFSETS_MINUTES",
    "reminder_channels": "REMINDER_CHANNELS",
    "webhook_url": "REMINDER_WEBHOOK_URL",
    "timezone": "APPOINTMENT_TIMEZONE",
    "missed_reminder_grace_minutes": "MISSED_REMINDER_GRACE_MINUTES",
    "allow_system_cancel": "ALLOW_SYSTEM_CANCEL",
    "log_level": "LOG_LEVEL",
}


def load_settings(**overrides) -> EngineSettings:
    """Build settings from .env / environment, with explicit overrides winning."""
    load_dotenv(find_dotenv(usecwd=True), override=True)
    values = {}
    for field_name, env_var in ENV_VARS.items():
        raw = os.environ.get(env_var)
        if raw is not None and raw != "":
            values[field_name] = raw
    values.update(overrides)
    return EngineSettings(**values)
