"""Host diagnostic display stand-in."""

from __future__ import annotations

import logging
from typing import Dict, List, Protocol, Sequence

from ..ai.findings import RangedFinding

LOGGER = logging.getLogger(__name__)


class DiagnosticSink(Protocol):
    """Namespaced surface that displays findings for a document."""

    def set(self, namespace: str, document_id: str, findings: Sequence[RangedFinding]) -> None:  # pragma: no cover - protocol
        ...

    def reset(self, namespace: str, document_id: str) -> None:  # pragma: no cover - protocol
        ...


class DiagnosticStore:
    """In-memory sink; each ``set`` replaces the previous findings wholesale."""

    def __init__(self) -> None:
        self._entries: Dict[str, Dict[str, tuple[RangedFinding, ...]]] = {}
        self.history: List[tuple[str, str, int]] = []

    def set(self, namespace: str, document_id: str, findings: Sequence[RangedFinding]) -> None:
        items = tuple(findings)
        self._entries.setdefault(namespace, {})[document_id] = items
        self.history.append((namespace, document_id, len(items)))
        LOGGER.debug("Published %s finding(s) for %s in %s", len(items), document_id, namespace)

    def reset(self, namespace: str, document_id: str) -> None:
        bucket = self._entries.get(namespace)
        if bucket is None or bucket.pop(document_id, None) is None:
            return
        if not bucket:
            self._entries.pop(namespace, None)

    def get(self, namespace: str, document_id: str) -> tuple[RangedFinding, ...]:
        return self._entries.get(namespace, {}).get(document_id, ())

    def keys(self, namespace: str) -> List[str]:
        return list(self._entries.get(namespace, {}))

    def namespaces(self) -> List[str]:
        return list(self._entries)


__all__ = ["DiagnosticSink", "DiagnosticStore"]
