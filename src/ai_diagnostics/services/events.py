"""Document lifecycle events published by the host workspace."""

from __future__ import annotations

import logging
import weakref
from dataclasses import dataclass
from pathlib import Path
from threading import RLock
from typing import Any, Callable, List, MutableMapping, Type

_LOGGER = logging.getLogger(__name__)


class DocumentEvent:
    """Base class for document lifecycle events."""

    __slots__ = ("document_id", "source")

    def __init__(self, document_id: str, *, source: str | None = None) -> None:
        self.document_id = document_id
        self.source = source

    def __repr__(self) -> str:
        return f"{type(self).__name__}(document_id={self.document_id!r})"


class DocumentSavedEvent(DocumentEvent):
    """Published after a document has been written to storage."""

    __slots__ = ("version_id", "content_hash", "path")

    def __init__(
        self,
        *,
        document_id: str,
        version_id: int,
        content_hash: str,
        path: Path | None = None,
        source: str | None = None,
    ) -> None:
        super().__init__(document_id, source=source)
        self.version_id = int(version_id)
        self.content_hash = content_hash
        self.path = path


class DocumentClosedEvent(DocumentEvent):
    """Published when a document is closed and per-document state should go."""

    __slots__ = ("version_id", "reason")

    def __init__(
        self,
        *,
        document_id: str,
        version_id: int | None = None,
        reason: str | None = None,
        source: str | None = None,
    ) -> None:
        super().__init__(document_id, source=source)
        self.version_id = version_id
        self.reason = reason


Subscriber = Callable[[DocumentEvent], None]


@dataclass(slots=True)
class _Subscriber:
    event_type: Type[DocumentEvent]
    identity_func: Any
    identity_target: object | None
    strong_handler: Subscriber | None
    weak_ref: Callable[[], Subscriber | None] | None = None

    def resolve(self) -> Subscriber | None:
        if self.weak_ref is not None:
            return self.weak_ref()
        return self.strong_handler

    def matches(self, handler: Subscriber) -> bool:
        func = getattr(handler, "__func__", handler)
        if func is not self.identity_func and func != self.identity_func:
            return False
        bound = getattr(handler, "__self__", None)
        target = self.identity_target
        if isinstance(target, weakref.ReferenceType):
            return target() is bound
        return target is bound


class DocumentEventBus:
    """Synchronous pub/sub bus for document lifecycle events."""

    def __init__(self) -> None:
        self._subscribers: MutableMapping[Type[DocumentEvent], List[_Subscriber]] = {}
        self._lock = RLock()

    def subscribe(self, event_type: Type[DocumentEvent], handler: Subscriber, *, weak: bool = False) -> None:
        func = getattr(handler, "__func__", handler)
        bound = getattr(handler, "__self__", None)
        identity_target: object | None = bound
        weak_ref: Callable[[], Subscriber | None] | None = None
        strong: Subscriber | None = handler
        if weak:
            try:
                weak_ref = weakref.WeakMethod(handler) if bound is not None else weakref.ref(handler)  # type: ignore[arg-type]
            except TypeError:
                weak_ref = None
            if weak_ref is not None:
                strong = None
                if bound is not None:
                    identity_target = weakref.ref(bound)
        subscriber = _Subscriber(
            event_type=event_type,
            identity_func=func,
            identity_target=identity_target,
            strong_handler=strong,
            weak_ref=weak_ref,
        )
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(subscriber)

    def unsubscribe(self, event_type: Type[DocumentEvent], handler: Subscriber) -> None:
        with self._lock:
            subscribers = self._subscribers.get(event_type)
            if not subscribers:
                return
            subscribers[:] = [sub for sub in subscribers if not sub.matches(handler)]
            if not subscribers:
                self._subscribers.pop(event_type, None)

    def subscriber_count(self, event_type: Type[DocumentEvent] | None = None) -> int:
        with self._lock:
            if event_type is not None:
                return len(self._subscribers.get(event_type, ()))
            return sum(len(subs) for subs in self._subscribers.values())

    def publish(self, event: DocumentEvent) -> None:
        to_invoke: list[Subscriber] = []
        with self._lock:
            for event_type, subscribers in list(self._subscribers.items()):
                if not isinstance(event, event_type):
                    continue
                stale: list[_Subscriber] = []
                for subscriber in list(subscribers):
                    callback = subscriber.resolve()
                    if callback is None:
                        stale.append(subscriber)
                        continue
                    to_invoke.append(callback)
                for target in stale:
                    subscribers.remove(target)
                if not subscribers:
                    self._subscribers.pop(event_type, None)
        for callback in to_invoke:
            try:
                callback(event)
            except Exception:  # pragma: no cover - subscriber isolation
                _LOGGER.exception("Document event subscriber failed for %r", event)


_GLOBAL_BUS: DocumentEventBus | None = None


def get_document_event_bus() -> DocumentEventBus:
    global _GLOBAL_BUS
    if _GLOBAL_BUS is None:
        _GLOBAL_BUS = DocumentEventBus()
    return _GLOBAL_BUS


def set_document_event_bus(bus: DocumentEventBus | None) -> DocumentEventBus:
    global _GLOBAL_BUS
    _GLOBAL_BUS = bus if bus is not None else DocumentEventBus()
    return _GLOBAL_BUS


__all__ = [
    "DocumentClosedEvent",
    "DocumentEvent",
    "DocumentEventBus",
    "DocumentSavedEvent",
    "Subscriber",
    "get_document_event_bus",
    "set_document_event_bus",
]
