"""In-process structured telemetry for diagnostics job lifecycles."""

from __future__ import annotations

import logging
from collections import deque
from threading import Lock
from typing import Any, Callable, Iterable, Mapping

LOGGER = logging.getLogger(__name__)

TelemetryListener = Callable[[dict[str, Any]], None]

_EVENT_LISTENERS: dict[str, list[TelemetryListener]] = {}


def register_event_listener(event_name: str, callback: TelemetryListener) -> None:
    """Register a callback invoked whenever :func:`emit` fires *event_name*."""

    if not event_name or callback is None:
        return
    listeners = _EVENT_LISTENERS.setdefault(event_name, [])
    if callback not in listeners:
        listeners.append(callback)


def unregister_event_listener(event_name: str, callback: TelemetryListener) -> None:
    listeners = _EVENT_LISTENERS.get(event_name)
    if not listeners:
        return
    try:
        listeners.remove(callback)
    except ValueError:
        return
    if not listeners:
        _EVENT_LISTENERS.pop(event_name, None)


def emit(event_name: str, payload: Mapping[str, Any] | None = None) -> None:
    """Broadcast a structured telemetry event to in-process listeners."""

    if not event_name:
        return
    event_payload: dict[str, Any] = {"event": event_name}
    if payload:
        event_payload.update(payload)
    listeners = list(_EVENT_LISTENERS.get(event_name, ()))
    for callback in listeners:
        try:
            callback(dict(event_payload))
        except Exception:  # pragma: no cover - listeners must not break emitters
            LOGGER.debug("Telemetry listener %s failed", callback, exc_info=True)
    LOGGER.debug("Telemetry emit %s: %s", event_name, event_payload)


class InMemoryTelemetrySink:
    """Ring buffer of emitted events for local inspection and tests."""

    def __init__(self, capacity: int = 200) -> None:
        self._capacity = max(10, capacity)
        self._buffer: deque[dict[str, Any]] = deque(maxlen=self._capacity)
        self._lock = Lock()
        self._names: list[str] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    def record(self, event: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.append(event)

    def attach(self, event_names: Iterable[str]) -> None:
        for name in event_names:
            register_event_listener(name, self.record)
            self._names.append(name)

    def detach(self) -> None:
        for name in self._names:
            unregister_event_listener(name, self.record)
        self._names.clear()

    def tail(self, limit: int | None = None) -> list[dict[str, Any]]:
        with self._lock:
            events = list(self._buffer)
        if limit is None or limit >= len(events):
            return events
        return events[-limit:]

    def names(self) -> list[str]:
        return [event["event"] for event in self.tail()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


__all__ = [
    "InMemoryTelemetrySink",
    "TelemetryListener",
    "emit",
    "register_event_listener",
    "unregister_event_listener",
]
