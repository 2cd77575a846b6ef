"""Dataclasses representing host document state and snapshots."""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from ..ai.findings import FindingRequest
from ..core.anchors import count_lines


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def _hash_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class DocumentMetadata:
    """Metadata describing a loaded document."""

    path: Optional[Path] = None
    language: str = "text"
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    saved_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        if self.path is None:
            return "untitled"
        return self.path.name or str(self.path)


@dataclass(slots=True)
class DocumentState:
    """Text and bookkeeping for one open document."""

    text: str = ""
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    dirty: bool = False
    document_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    version_id: int = 1
    content_hash: str = field(default_factory=str)

    def __post_init__(self) -> None:
        if not self.content_hash:
            self.content_hash = _hash_text(self.text)

    @property
    def line_count(self) -> int:
        return count_lines(self.text)

    @property
    def language(self) -> str:
        return self.metadata.language

    def update_text(self, new_text: str) -> None:
        """Update the document text and mark it dirty."""

        self.text = new_text
        self.dirty = True
        self.metadata.updated_at = _utcnow()
        self.version_id += 1
        self.content_hash = _hash_text(new_text)

    def mark_saved(self) -> None:
        self.dirty = False
        self.metadata.saved_at = _utcnow()

    def snapshot(self) -> FindingRequest:
        """Capture the text and language sent with an analysis request."""

        return FindingRequest(
            document_id=self.document_id,
            text=self.text,
            language=self.metadata.language,
            version_id=self.version_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "document_id": self.document_id,
            "language": self.metadata.language,
            "dirty": self.dirty,
            "version_id": self.version_id,
            "content_hash": self.content_hash,
            "line_count": self.line_count,
        }
        if self.metadata.path:
            payload["path"] = str(self.metadata.path)
        return payload

    def version_signature(self) -> str:
        return f"{self.document_id}:{self.version_id}:{self.content_hash}"


__all__ = ["DocumentMetadata", "DocumentState"]
