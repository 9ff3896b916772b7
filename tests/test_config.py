"""Tests for engine settings."""

import pytest
from pydantic import ValidationError

from appointment_coordinator.config import ENV_VARS, EngineSettings, load_settings


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No .env file and none of the engine variables set."""
    monkeypatch.chdir(tmp_path)
    for env_var in ENV_VARS.values():
        monkeypatch.delenv(env_var, raising=False)
    return monkeypatch


class TestEngineSettings:
    def test_defaults(self):
        settings = EngineSettings()
        assert settings.reminder_offsets_minutes == [1440, 120]
        assert settings.reminder_channels == ["log"]
        assert settings.timezone == "UTC"
        assert settings.allow_system_cancel is True

    def test_offsets_from_string_sorted_and_deduplicated(self):
        settings = EngineSettings(reminder_offsets_minutes="60, 1440,60")
        assert settings.reminder_offsets_minutes == [1440, 60]

    def test_offsets_must_be_positive(self):
        with pytest.raises(ValidationError):
            EngineSettings(reminder_offsets_minutes=[60, 0])

    def test_channels_required(self):
        with pytest.raises(ValidationError):
            EngineSettings(reminder_channels="")

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError):
            EngineSettings(timezone="Mars/Olympus_Mons")

    def test_tz_property(self):
        assert EngineSettings(timezone="America/New_York").tz.zone == "America/New_York"

    def test_log_level_normalized(self):
        assert EngineSettings(log_level="debug").log_level == "DEBUG"


class TestLoadSettings:
    """Tests for reading settings from the environment."""

    def test_reads_environment(self, clean_env, tmp_path):
        clean_env.setenv("APPOINTMENT_DB_PATH", str(tmp_path / "x.db"))
        clean_env.setenv("REMINDER_OFFSETS_MINUTES", "1440,30")
        clean_env.setenv("REMINDER_CHANNELS", "log,webhook")
        clean_env.setenv("REMINDER_WEBHOOK_URL", "https://hooks.example.com/reminders")
        clean_env.setenv("ALLOW_SYSTEM_CANCEL", "false")
        clean_env.setenv("MISSED_REMINDER_GRACE_MINUTES", "15")

        settings = load_settings()

        assert settings.db_path == tmp_path / "x.db"
        assert settings.reminder_offsets_minutes == [1440, 30]
        assert settings.reminder_channels == ["log", "webhook"]
        assert settings.webhook_url == "https://hooks.example.com/reminders"
        assert settings.allow_system_cancel is False
        assert settings.missed_reminder_grace_minutes == 15

    def test_reads_dotenv_file(self, clean_env, tmp_path):
        (tmp_path / ".env").write_text("APPOINTMENT_TIMEZONE=Europe/London\n")
        assert load_settings().timezone == "Europe/London"

    def test_empty_values_ignored(self, clean_env):
        clean_env.setenv("REMINDER_CHANNELS", "")
        assert load_settings().reminder_channels == ["log"]

    def test_overrides_win(self, clean_env):
        clean_env.setenv("LOG_LEVEL", "WARNING")
        assert load_settings(log_level="debug").log_level == "DEBUG"

    def test_invalid_environment_value(self, clean_env):
        clean_env.setenv("APPOINTMENT_TIMEZONE", "Nowhere/Special")
        with pytest.raises(ValidationError):
            load_settings()
