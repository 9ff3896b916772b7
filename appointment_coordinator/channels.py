"""Notification channels shipped with the engine."""

import asyncio
import logging
from typing import Any

import requests

from appointment_coordinator.errors import NotificationDeliveryError

logger = logging.getLogger(__name__)


class LogChannel:
    """Writes reminders to the log. Stands in for in-app delivery."""

    name = "log"

    async def send(self, target: str, payload: dict[str, Any]) -> bool:
        logger.info("Reminder for %s: %s - %s", target, payload.get("title"), payload.get("message"))
        return True


class WebhookChannel:
    """POSTs each reminder as JSON to an HTTP endpoint."""

    name = "webhook"

    def __init__(self, url: str, timeout: float = 10):
        if not url:
            raise ValueError("Webhook URL cannot be empty")
        self.url = url
        self.timeout = timeout

    async def send(self, target: str, payload: dict[str, Any]) -> bool:
        body = {"target": target, **payload}
        return await asyncio.to_thread(self._post, body)

    def _post(self, body: dict[str, Any]) -> bool:
        try:
            response = requests.post(self.url, json=body, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise NotificationDeliveryError("Webhook request timed out") from e
        except requests.exceptions.ConnectionError as e:
            raise NotificationDeliveryError("Failed to connect to webhook") from e

        if response.status_code >= 400:
            raise NotificationDeliveryError(f"Webhook error: {response.status_code}")
        return True


def build_channels(settings) -> dict[str, Any]:
    """Channels available under the given settings, keyed by name."""
    channels: dict[str, Any] = {LogChannel.name: LogChannel()}
    if settings.webhook_url:
        channels[WebhookChannel.name] = WebhookChannel(settings.webhook_url)

    unknown = [name for name in settings.reminder_channels if name not in channels]
    if unknown:
        raise ValueError(f"Reminder channels not configured: {', '.join(unknown)}")
    return channels
