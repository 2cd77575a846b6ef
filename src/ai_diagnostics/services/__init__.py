"""Service layer helpers (events, settings, notifications, telemetry)."""

from .events import DocumentClosedEvent, DocumentEventBus, DocumentSavedEvent
from .notifications import LoggingNotifier, NotificationLevel, Notifier, RecordingNotifier

__all__ = [
    "DocumentClosedEvent",
    "DocumentEventBus",
    "DocumentSavedEvent",
    "LoggingNotifier",
    "NotificationLevel",
    "Notifier",
    "RecordingNotifier",
]
