"""Resolve verbatim anchor snippets into line/column ranges.

The analysis service cannot be trusted to report coordinates: its notion of a
line number drifts with tokenisation. Instead it quotes the first and last
snippet of each finding verbatim, and the snippets are located again in the
live document text. When a snippet occurs more than once the first match
wins.
"""

from __future__ import annotations

from dataclasses import dataclass

from .ranges import LineColumnRange, Position, TextRange

__all__ = [
    "AnchorResolution",
    "count_lines",
    "END_ANCHOR_NOT_FOUND",
    "START_ANCHOR_NOT_FOUND",
    "find_anchor_span",
    "normalize_newlines",
    "offset_to_position",
    "resolve_anchors",
]

START_ANCHOR_NOT_FOUND = "start_anchor not found"
END_ANCHOR_NOT_FOUND = "end_anchor not found"


@dataclass(slots=True, frozen=True)
class AnchorResolution:
    """Either a resolved range or the reason resolution failed."""

    range: LineColumnRange | None = None
    span: TextRange | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.range is not None

    @classmethod
    def failure(cls, reason: str) -> AnchorResolution:
        return cls(reason=reason)


def normalize_newlines(text: str) -> str:
    """Return ``text`` with ``\\r\\n`` and lone ``\\r`` folded into ``\\n``."""

    if "\r" not in text:
        return text
    return text.replace("\r\n", "\n").replace("\r", "\n")


def count_lines(text: str) -> int:
    """Return the number of editor lines in ``text``.

    A trailing newline terminates the last line instead of opening a new one,
    and empty text still holds a single line.
    """

    lines = text.count("\n")
    if not text.endswith("\n"):
        lines += 1
    return max(lines, 1)


def offset_to_position(text: str, offset: int) -> Position:
    """Convert an absolute offset into a zero-based (line, column) pair."""

    offset = max(0, min(offset, len(text)))
    line = text.count("\n", 0, offset)
    line_start = text.rfind("\n", 0, offset) + 1
    return Position(line, offset - line_start)


def find_anchor_span(text: str, start_anchor: str, end_anchor: str) -> TextRange | str:
    """Return the absolute span covered by the anchors, or a failure reason.

    ``end_anchor`` is searched from the start of the ``start_anchor`` match so
    identical or overlapping anchors are satisfied by the same occurrence.
    """

    if not start_anchor:
        return START_ANCHOR_NOT_FOUND
    start = text.find(start_anchor)
    if start < 0:
        return START_ANCHOR_NOT_FOUND
    if not end_anchor:
        return END_ANCHOR_NOT_FOUND
    end = text.find(end_anchor, start)
    if end < 0:
        return END_ANCHOR_NOT_FOUND
    return TextRange(start, end + len(end_anchor))


def resolve_anchors(text: str, start_anchor: str, end_anchor: str) -> AnchorResolution:
    """Locate ``start_anchor``/``end_anchor`` in ``text`` and build a range.

    The end column is one past the last matched character, clamped to the
    length of its line so an anchor ending in a newline stops at end of line.
    """

    span = find_anchor_span(text, start_anchor, end_anchor)
    if isinstance(span, str):
        return AnchorResolution.failure(span)
    start = offset_to_position(text, span.start)
    last = offset_to_position(text, span.end - 1)
    end_column = min(last.column + 1, _line_length(text, span.end - 1))
    return AnchorResolution(
        range=LineColumnRange(start.line, start.column, last.line, end_column),
        span=span,
    )


def _line_length(text: str, offset: int) -> int:
    line_start = text.rfind("\n", 0, offset) + 1
    line_end = text.find("\n", line_start)
    if line_end < 0:
        line_end = len(text)
    return line_end - line_start
