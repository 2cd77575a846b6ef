"""User-facing notification channel."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Protocol

LOGGER = logging.getLogger(__name__)

NOTIFICATION_PREFIX = "AI Diagnostics: "


class NotificationLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def logging_level(self) -> int:
        return {
            NotificationLevel.INFO: logging.INFO,
            NotificationLevel.WARNING: logging.WARNING,
            NotificationLevel.ERROR: logging.ERROR,
        }[self]

    @classmethod
    def from_error_level(cls, level: str) -> NotificationLevel:
        try:
            return cls(level)
        except ValueError:
            return cls.ERROR


class Notifier(Protocol):
    """Host channel for short user-visible messages."""

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None:  # pragma: no cover - protocol
        ...


def format_notification(message: str) -> str:
    if message.startswith(NOTIFICATION_PREFIX):
        return message
    return f"{NOTIFICATION_PREFIX}{message}"


class LoggingNotifier:
    """Routes notifications to a logger, used when no host UI is attached."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("ai_diagnostics.notify")

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        self._logger.log(level.logging_level, format_notification(message))


@dataclass(slots=True, frozen=True)
class Notification:
    message: str
    level: NotificationLevel


class RecordingNotifier:
    """Keeps every notification in memory; handy for tests and batch runs."""

    def __init__(self) -> None:
        self.notifications: List[Notification] = []

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        self.notifications.append(Notification(format_notification(message), level))

    @property
    def messages(self) -> List[str]:
        return [item.message for item in self.notifications]

    def at_level(self, level: NotificationLevel) -> List[str]:
        return [item.message for item in self.notifications if item.level is level]

    def clear(self) -> None:
        self.notifications.clear()


__all__ = [
    "LoggingNotifier",
    "NOTIFICATION_PREFIX",
    "Notification",
    "NotificationLevel",
    "Notifier",
    "RecordingNotifier",
    "format_notification",
]
