"""Dataclasses describing findings before and after range resolution."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Sequence

from ..core.anchors import count_lines
from ..core.errors import EnvelopeError, PayloadError
from ..core.ranges import LineColumnRange

FINDING_SOURCE = "ai-diagnostics"


class Severity(str, Enum):
    """Fixed four-value severity vocabulary used by the host display."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    HINT = "hint"

    @classmethod
    def coerce(cls, value: Any) -> Severity:
        """Map ``value`` onto the vocabulary, defaulting to :attr:`INFO`."""

        if isinstance(value, Severity):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.INFO


class FindingFormat(str, Enum):
    """Location style the service is asked to use for each finding."""

    ANCHORS = "anchors"
    LOCATOR = "locator"


@dataclass(slots=True, frozen=True)
class FindingRequest:
    """Snapshot of a document captured when a debounced trigger fires."""

    document_id: str
    text: str
    language: str
    version_id: int = 0
    captured_at: float = field(default_factory=time.time)

    @property
    def line_count(self) -> int:
        return count_lines(self.text)


@dataclass(slots=True, frozen=True)
class AnchorFinding:
    """Finding located by two verbatim snippets of the document."""

    start_anchor: str
    end_anchor: str
    severity: Severity = Severity.INFO
    message: str = ""
    code: str | None = None


@dataclass(slots=True, frozen=True)
class LocatorFinding:
    """Finding located by 1-based line/column numbers reported by the service."""

    line: int
    column: int | None = None
    end_line: int | None = None
    end_column: int | None = None
    severity: Severity = Severity.INFO
    message: str = ""
    code: str | None = None


Finding = AnchorFinding | LocatorFinding


@dataclass(slots=True, frozen=True)
class RangedFinding:
    """A finding whose location has been resolved to an exact range."""

    range: LineColumnRange
    severity: Severity
    message: str
    code: str | None = None
    source: str = FINDING_SOURCE

    @property
    def lnum(self) -> int:
        return self.range.start_line

    @property
    def col(self) -> int:
        return self.range.start_column

    @property
    def end_lnum(self) -> int:
        return self.range.end_line

    @property
    def end_col(self) -> int:
        return self.range.end_column

    def to_dict(self) -> dict[str, Any]:
        """Return the finding in the host diagnostic shape."""

        payload: dict[str, Any] = self.range.to_dict()
        payload.update(
            {
                "severity": self.severity.value,
                "message": self.message,
                "code": self.code,
                "source": self.source,
            }
        )
        return payload


@dataclass(slots=True, frozen=True)
class ParsedResult:
    """Ordered findings produced from one service response."""

    findings: tuple[RangedFinding, ...] = ()
    dropped: int = 0

    ok = True

    def __len__(self) -> int:
        return len(self.findings)

    def __iter__(self) -> Iterator[RangedFinding]:
        return iter(self.findings)

    def __getitem__(self, index: int) -> RangedFinding:
        return self.findings[index]

    def to_list(self) -> list[dict[str, Any]]:
        return [finding.to_dict() for finding in self.findings]

    @classmethod
    def from_findings(cls, findings: Sequence[RangedFinding], *, dropped: int = 0) -> ParsedResult:
        return cls(findings=tuple(findings), dropped=max(0, dropped))


@dataclass(slots=True, frozen=True)
class ParseFailure:
    """Explicit parse failure naming which expectation was violated."""

    kind: str
    code: str
    message: str

    ok = False

    ENVELOPE = "envelope"
    PAYLOAD = "payload"

    def to_error(self) -> EnvelopeError | PayloadError:
        if self.kind == self.ENVELOPE:
            return EnvelopeError(error_code=self.code, message=self.message)
        return PayloadError(error_code=self.code, message=self.message)

    @classmethod
    def envelope(cls, code: str, message: str) -> ParseFailure:
        return cls(kind=cls.ENVELOPE, code=code, message=message)

    @classmethod
    def payload(cls, code: str, message: str) -> ParseFailure:
        return cls(kind=cls.PAYLOAD, code=code, message=message)


ParseOutcome = ParsedResult | ParseFailure


__all__ = [
    "AnchorFinding",
    "FINDING_SOURCE",
    "Finding",
    "FindingFormat",
    "FindingRequest",
    "LocatorFinding",
    "ParseFailure",
    "ParseOutcome",
    "ParsedResult",
    "RangedFinding",
    "Severity",
]
