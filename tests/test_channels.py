"""Tests for the notification channels."""

from unittest.mock import Mock, patch

import pytest
import requests

from appointment_coordinator.channels import LogChannel, WebhookChannel, build_channels
from appointment_coordinator.config import EngineSettings
from appointment_coordinator.errors import NotificationDeliveryError

PAYLOAD = {"title": "Appointment Tomorrow", "message": "Reminder: you have an appointment tomorrow."}


class TestLogChannel:
    @pytest.mark.asyncio
    async def test_always_delivers(self, caplog):
        caplog.set_level("INFO")
        assert await LogChannel().send("A1", PAYLOAD) is True
        assert "Appointment Tomorrow" in caplog.text


class TestWebhookChannel:
    """Tests for WebhookChannel with requests mocked out."""

    def test_empty_url_rejected(self):
        with pytest.raises(ValueError):
            WebhookChannel("")

    @pytest.mark.asyncio
    @patch("appointment_coordinator.channels.requests.post")
    async def test_posts_payload(self, mock_post):
        mock_post.return_value = Mock(status_code=200)
        channel = WebhookChannel("https://hooks.example.com/reminders", timeout=5)

        assert await channel.send("A1", PAYLOAD) is True

        mock_post.assert_called_once()
        args, kwargs = mock_post.call_args
        assert args[0] == "https://hooks.example.com/reminders"
        assert kwargs["json"]["target"] == "A1"
        assert kwargs["json"]["title"] == "Appointment Tomorrow"
        assert kwargs["timeout"] == 5

    @pytest.mark.asyncio
    @patch("appointment_coordinator.channels.requests.post")
    async def test_http_error(self, mock_post):
        mock_post.return_value = Mock(status_code=503)
        with pytest.raises(NotificationDeliveryError, match="503"):
            await WebhookChannel("https://hooks.example.com/reminders").send("A1", PAYLOAD)

    @pytest.mark.asyncio
    @patch("appointment_coordinator.channels.requests.post")
    async def test_timeout(self, mock_post):
        mock_post.side_effect = requests.exceptions.Timeout()
        with pytest.raises(NotificationDeliveryError, match="timed out"):
            await WebhookChannel("https://hooks.example.com/reminders").send("A1", PAYLOAD)

    @pytest.mark.asyncio
    @patch("appointment_coordinator.channels.requests.post")
    async def test_connection_error(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectionError()
        with pytest.raises(NotificationDeliveryError, match="connect"):
            await WebhookChannel("https://hooks.example.com/reminders").send("A1", PAYLOAD)


class TestBuildChannels:
    def test_log_only_by_default(self):
        channels = build_channels(EngineSettings())
        assert set(channels) == {"log"}

    def test_webhook_when_url_set(self):
        settings = EngineSettings(reminder_channels=["log", "webhook"], webhook_url="https://hooks.example.com")
        assert set(build_channels(settings)) == {"log", "webhook"}

    def test_unconfigured_channel(self):
        with pytest.raises(ValueError, match="webhook"):
            build_channels(EngineSettings(reminder_channels=["webhook"]))
