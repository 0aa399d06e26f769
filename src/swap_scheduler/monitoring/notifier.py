"""Owner notifications for order status changes.

Delivery is best effort: :class:`Notifier` fans a message out to every
registered sink and only logs sink failures, so a broken channel never changes
the outcome of the order being processed.
"""

from __future__ import annotations

import json
import logging
import os
import urllib.request
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org/bot{token}/sendMessage"


class NotificationSink(ABC):
    """Base class for notification destinations."""

    @abstractmethod
    def send(self, owner_id: int, message: str) -> None:
        """Deliver ``message`` to the owner. May raise; the notifier handles it."""


class ConsoleSink(NotificationSink):
    """Write notifications to the log."""

    def send(self, owner_id: int, message: str) -> None:
        logger.info("[NOTIFY %s] %s", owner_id, message)


class TelegramSink(NotificationSink):
    """Send notifications as Telegram chat messages; the owner id is the chat id."""

    def __init__(self, token: str, *, timeout: int = 10, parse_mode: str | None = "Markdown") -> None:
        self._token = token
        self._timeout = timeout
        self._parse_mode = parse_mode

    def send(self, owner_id: int, message: str) -> None:
        body: dict[str, object] = {"chat_id": owner_id, "text": message}
        if self._parse_mode:
            body["parse_mode"] = self._parse_mode
        req = urllib.request.Request(
            TELEGRAM_API.format(token=self._token),
            data=json.dumps(body).encode(),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(req, timeout=self._timeout) as resp:  # noqa: S310
            result = json.loads(resp.read().decode())
        if not result.get("ok"):
            msg = f"Telegram rejected message for {owner_id}: {result.get('description', 'unknown error')}"
            raise RuntimeError(msg)

    @staticmethod
    def from_env(token_env: str = "BOT_TOKEN") -> TelegramSink | None:
        """Build a sink from the bot token env var, or return None when it is unset."""
        token = os.environ.get(token_env)
        if not token:
            logger.info("%s not set; Telegram notifications disabled", token_env)
            return None
        return TelegramSink(token)


class WebhookSink(NotificationSink):
    """POST notifications to a webhook URL as JSON."""

    def __init__(self, url: str, *, timeout: int = 10) -> None:
        self._url = url
        self._timeout = timeout

    def send(self, owner_id: int, message: str) -> None:
        payload = json.dumps({"owner_id": owner_id, "text": message}).encode()
        req = urllib.request.Request(
            self._url,
            data=payload,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(req, timeout=self._timeout):  # noqa: S310
            pass


class Notifier:
    """Dispatch owner notifications to registered sinks."""

    def __init__(self, sinks: list[NotificationSink] | None = None) -> None:
        self._sinks: list[NotificationSink] = list(sinks or [])

    def register(self, sink: NotificationSink) -> None:
        """Add a notification sink."""
        self._sinks.append(sink)

    def send(self, owner_id: int, message: str) -> None:
        """Send a message to all registered sinks. Never raises."""
        for sink in self._sinks:
            try:
                sink.send(owner_id, message)
            except Exception:
                logger.exception("Notification sink %s failed for owner %s", type(sink).__name__, owner_id)

    @property
    def sink_count(self) -> int:
        """Number of registered sinks."""
        return len(self._sinks)
