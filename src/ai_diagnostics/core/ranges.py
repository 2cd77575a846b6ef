"""Structured helpers for representing text spans."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Iterator


def _coerce_index(value: Any, label: str, owner: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{owner} {label} must be an integer") from exc
    if number < 0:
        return 0
    return number


@dataclass(slots=True, frozen=True)
class TextRange(Sequence[int]):
    """Canonical representation of a span using absolute offsets."""

    start: int
    end: int

    def __post_init__(self) -> None:
        start = _coerce_index(self.start, "start", "TextRange")
        end = _coerce_index(self.end, "end", "TextRange")
        if end < start:
            start, end = end, start
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    def __len__(self) -> int:
        return 2

    def __getitem__(self, index: int | slice) -> int | tuple[int, ...]:
        if isinstance(index, slice):
            return self.to_tuple()[index]
        if index == 0:
            return self.start
        if index == 1:
            return self.end
        raise IndexError("TextRange index out of range")

    def __iter__(self) -> Iterator[int]:
        yield self.start
        yield self.end

    @property
    def length(self) -> int:
        """Return the width of the range."""

        return self.end - self.start

    def to_tuple(self) -> tuple[int, int]:
        return (self.start, self.end)


@dataclass(slots=True, frozen=True, order=True)
class Position:
    """Zero-based line/column coordinate inside a document."""

    line: int
    column: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "line", _coerce_index(self.line, "line", "Position"))
        object.__setattr__(self, "column", _coerce_index(self.column, "column", "Position"))

    def to_tuple(self) -> tuple[int, int]:
        return (self.line, self.column)


@dataclass(slots=True, frozen=True)
class LineColumnRange:
    """Half-open line/column range: inclusive start, exclusive end column."""

    start_line: int
    start_column: int
    end_line: int
    end_column: int

    def __post_init__(self) -> None:
        start = Position(self.start_line, self.start_column)
        end = Position(self.end_line, self.end_column)
        if end < start:
            start, end = end, start
        object.__setattr__(self, "start_line", start.line)
        object.__setattr__(self, "start_column", start.column)
        object.__setattr__(self, "end_line", end.line)
        object.__setattr__(self, "end_column", end.column)

    @property
    def start(self) -> Position:
        return Position(self.start_line, self.start_column)

    @property
    def end(self) -> Position:
        return Position(self.end_line, self.end_column)

    @property
    def is_single_line(self) -> bool:
        return self.start_line == self.end_line

    def to_tuple(self) -> tuple[int, int, int, int]:
        """Return ``(lnum, col, end_lnum, end_col)``."""

        return (self.start_line, self.start_column, self.end_line, self.end_column)

    def to_dict(self) -> dict[str, int]:
        """Return the range using the host diagnostic field names."""

        return {
            "lnum": self.start_line,
            "col": self.start_column,
            "end_lnum": self.end_line,
            "end_col": self.end_column,
        }

    @classmethod
    def from_value(cls, value: Any) -> LineColumnRange:
        """Coerce ``value`` into a :class:`LineColumnRange`."""

        if isinstance(value, LineColumnRange):
            return value
        if isinstance(value, Mapping):
            try:
                return cls(value["lnum"], value["col"], value["end_lnum"], value["end_col"])
            except KeyError as exc:
                raise ValueError(f"LineColumnRange mappings require {exc.args[0]!r}") from exc
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            seq = list(value)
            if len(seq) != 4:
                raise ValueError("LineColumnRange sequences must have exactly four entries")
            return cls(*seq)
        raise TypeError("Unsupported LineColumnRange input")


__all__ = ["TextRange", "Position", "LineColumnRange"]
