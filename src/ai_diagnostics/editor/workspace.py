"""In-memory document workspace standing in for the host editor."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from ..services.events import (
    DocumentClosedEvent,
    DocumentEventBus,
    DocumentSavedEvent,
    get_document_event_bus,
)
from .document_model import DocumentMetadata, DocumentState

__all__ = ["DocumentWorkspace", "infer_language"]

LOGGER = logging.getLogger(__name__)

_FILE_TYPE_MAP: dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".lua": "lua",
    ".js": "javascript",
    ".mjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".jsx": "javascriptreact",
    ".go": "go",
    ".rs": "rust",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".java": "java",
    ".rb": "ruby",
    ".sh": "sh",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".html": "html",
    ".css": "css",
    ".sql": "sql",
    ".md": "markdown",
    ".txt": "text",
}


def infer_language(path: Path | str | None, default: str = "text") -> str:
    """Return the language tag for ``path`` based on its suffix."""

    if path is None:
        return default
    suffix = Path(path).suffix.lower()
    return _FILE_TYPE_MAP.get(suffix, default)


def _normalize_path(path: Path | str | None) -> Path | None:
    if path is None:
        return None
    return Path(path).expanduser().resolve()


class DocumentWorkspace:
    """Holds open documents keyed by document id and publishes lifecycle events."""

    def __init__(self, *, bus: DocumentEventBus | None = None) -> None:
        self._bus = bus or get_document_event_bus()
        self._documents: Dict[str, DocumentState] = {}
        self._order: List[str] = []

    @property
    def bus(self) -> DocumentEventBus:
        return self._bus

    # ------------------------------------------------------------------
    # Document lifecycle
    # ------------------------------------------------------------------
    def open_document(
        self,
        *,
        text: str = "",
        path: Path | str | None = None,
        language: str | None = None,
        document_id: str | None = None,
    ) -> DocumentState:
        resolved_path = _normalize_path(path)
        metadata = DocumentMetadata(path=resolved_path, language=language or infer_language(resolved_path))
        document = DocumentState(text=text, metadata=metadata)
        if document_id:
            document.document_id = document_id
        if document.document_id in self._documents:
            raise KeyError(f"Document already open: {document.document_id}")
        self._documents[document.document_id] = document
        self._order.append(document.document_id)
        LOGGER.debug("Opened %s (%s, %s lines)", metadata.display_name, metadata.language, document.line_count)
        return document

    def open_file(self, path: Path | str, *, language: str | None = None, encoding: str = "utf-8") -> DocumentState:
        """Read ``path`` from disk and open it as a clean document."""

        resolved = _normalize_path(path)
        assert resolved is not None
        text = resolved.read_text(encoding=encoding)
        return self.open_document(text=text, path=resolved, language=language)

    def update_text(self, document_id: str, text: str) -> DocumentState:
        document = self._require(document_id)
        document.update_text(text)
        return document

    def save(self, document_id: str, *, write: bool = False, encoding: str = "utf-8") -> DocumentState:
        """Mark the document saved (optionally writing it) and publish the event."""

        document = self._require(document_id)
        path = document.metadata.path
        if write:
            if path is None:
                raise ValueError("Cannot write an untitled document")
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(document.text, encoding=encoding)
        document.mark_saved()
        self._bus.publish(
            DocumentSavedEvent(
                document_id=document.document_id,
                version_id=document.version_id,
                content_hash=document.content_hash,
                path=path,
                source="workspace",
            )
        )
        return document

    def close(self, document_id: str, *, reason: str | None = None) -> DocumentState:
        if document_id not in self._documents:
            raise KeyError(f"Unknown document_id: {document_id}")
        document = self._documents.pop(document_id)
        self._order.remove(document_id)
        self._bus.publish(
            DocumentClosedEvent(
                document_id=document_id,
                version_id=document.version_id,
                reason=reason,
                source="workspace",
            )
        )
        return document

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------
    def get(self, document_id: str) -> Optional[DocumentState]:
        return self._documents.get(document_id)

    def text(self, document_id: str) -> Optional[str]:
        document = self._documents.get(document_id)
        return document.text if document is not None else None

    def is_open(self, document_id: str) -> bool:
        return document_id in self._documents

    def find_by_path(self, path: Path | str) -> Optional[DocumentState]:
        target = _normalize_path(path)
        for document in self:
            if document.metadata.path == target:
                return document
        return None

    def document_ids(self) -> List[str]:
        return list(self._order)

    def __iter__(self) -> Iterator[DocumentState]:
        for document_id in list(self._order):
            yield self._documents[document_id]

    def __len__(self) -> int:
        return len(self._documents)

    def _require(self, document_id: str) -> DocumentState:
        document = self._documents.get(document_id)
        if document is None:
            raise KeyError(f"Unknown document_id: {document_id}")
        return document
