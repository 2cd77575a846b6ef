"""Tests for anchor resolution and the range helpers."""

from __future__ import annotations

import pytest

from ai_diagnostics.core.anchors import (
    END_ANCHOR_NOT_FOUND,
    START_ANCHOR_NOT_FOUND,
    count_lines,
    find_anchor_span,
    normalize_newlines,
    offset_to_position,
    resolve_anchors,
)
from ai_diagnostics.core.ranges import LineColumnRange, Position, TextRange

SAMPLE = "def divide(x):\n    return x / 0\n\nprint(divide(4))\n"


def test_single_line_anchor_pair() -> None:
    resolution = resolve_anchors(SAMPLE, "return", "/ 0")

    assert resolution.ok
    assert resolution.range is not None
    assert resolution.range.to_tuple() == (1, 4, 1, 16)
    assert resolution.span == TextRange(19, 31)


@pytest.mark.parametrize(
    ("start_anchor", "end_anchor", "reason"),
    [("return", "/ 0", None), ("missing", "/ 0", START_ANCHOR_NOT_FOUND), ("return", "missing", END_ANCHOR_NOT_FOUND)],
)
def test_resolution_is_repeatable_and_leaves_text_untouched(
    start_anchor: str, end_anchor: str, reason: str | None
) -> None:
    text = str(SAMPLE)

    first = resolve_anchors(text, start_anchor, end_anchor)
    second = resolve_anchors(text, start_anchor, end_anchor)

    assert first == second
    assert first.reason == reason
    assert text == SAMPLE


def test_multi_line_anchor_pair() -> None:
    text = "alpha\nbeta\ngamma"

    resolution = resolve_anchors(text, "pha", "gam")

    assert resolution.range == LineColumnRange(0, 2, 2, 3)
    assert not resolution.range.is_single_line


def test_identical_anchors_use_the_same_occurrence() -> None:
    resolution = resolve_anchors("a foo b foo", "foo", "foo")

    assert resolution.range is not None
    assert resolution.range.to_tuple() == (0, 2, 0, 5)


def test_overlapping_anchors_are_satisfied_by_one_match() -> None:
    resolution = resolve_anchors("value = compute(arg)", "compute(", "(arg)")

    assert resolution.range is not None
    assert resolution.range.to_tuple() == (0, 8, 0, 20)


def test_first_match_wins_for_ambiguous_snippets() -> None:
    resolution = resolve_anchors("x x x", "x", "x")

    assert resolution.range is not None
    assert resolution.range.to_tuple() == (0, 0, 0, 1)


def test_missing_start_anchor_reports_reason() -> None:
    resolution = resolve_anchors(SAMPLE, "lambda", "0")

    assert not resolution.ok
    assert resolution.range is None
    assert resolution.reason == START_ANCHOR_NOT_FOUND == "start_anchor not found"


def test_end_anchor_only_searched_after_start() -> None:
    resolution = resolve_anchors("x = 1\ny = 2", "y", "x")

    assert resolution.reason == END_ANCHOR_NOT_FOUND == "end_anchor not found"


@pytest.mark.parametrize(
    ("start", "end", "reason"),
    [
        ("", "x", START_ANCHOR_NOT_FOUND),
        ("x", "", END_ANCHOR_NOT_FOUND),
        ("", "", START_ANCHOR_NOT_FOUND),
    ],
)
def test_empty_anchors_never_match(start: str, end: str, reason: str) -> None:
    assert resolve_anchors("x = 1", start, end).reason == reason


def test_anchor_ending_in_newline_stops_at_end_of_line() -> None:
    resolution = resolve_anchors("foo\nbar", "foo", "foo\n")

    assert resolution.range is not None
    assert resolution.range.to_tuple() == (0, 0, 0, 3)


def test_columns_count_code_points() -> None:
    text = "é = 1\nλ = 2"

    resolution = resolve_anchors(text, "λ", "2")

    assert resolution.range is not None
    assert resolution.range.to_tuple() == (1, 0, 1, 5)


def test_single_line_ranges_slice_back_to_the_anchor() -> None:
    lines = SAMPLE.split("\n")
    for anchor in ("def", "divide(x)", "return x", "0", "print(divide(4))", "(4)"):
        resolution = resolve_anchors(SAMPLE, anchor, anchor)
        assert resolution.range is not None, anchor
        span = resolution.range
        assert span.is_single_line
        assert lines[span.start_line][span.start_column : span.end_column] == anchor
        assert SAMPLE.find(anchor) == SAMPLE.find(lines[span.start_line]) + span.start_column


def test_start_never_after_end() -> None:
    text = "one\ntwo\nthree\n"
    for start, end in (("one", "three"), ("t", "e"), ("two\n", "th"), ("\n", "\n")):
        resolution = resolve_anchors(text, start, end)
        assert resolution.range is not None
        assert resolution.range.start <= resolution.range.end


def test_find_anchor_span_returns_absolute_offsets() -> None:
    span = find_anchor_span("abc def ghi", "def", "ghi")

    assert isinstance(span, TextRange)
    assert span.to_tuple() == (4, 11)
    assert span.length == 7


def test_normalize_newlines_folds_carriage_returns() -> None:
    assert normalize_newlines("a\r\nb\rc\n") == "a\nb\nc\n"
    assert normalize_newlines("plain") == "plain"


@pytest.mark.parametrize(
    ("text", "lines"),
    [("", 1), ("a", 1), ("a\n", 1), ("a\nb\nc\n", 3), ("a\nb\nc", 3), ("a\n\n", 2), ("\n", 1)],
)
def test_count_lines_ignores_trailing_newline(text: str, lines: int) -> None:
    assert count_lines(text) == lines


def test_offset_to_position_clamps() -> None:
    text = "ab\ncd"

    assert offset_to_position(text, 0) == Position(0, 0)
    assert offset_to_position(text, 2) == Position(0, 2)
    assert offset_to_position(text, 3) == Position(1, 0)
    assert offset_to_position(text, 99) == Position(1, 2)
    assert offset_to_position(text, -4) == Position(0, 0)


def test_line_column_range_orders_endpoints() -> None:
    span = LineColumnRange(2, 0, 1, 5)

    assert span.start == Position(1, 5)
    assert span.end == Position(2, 0)
    assert span.to_dict() == {"lnum": 1, "col": 5, "end_lnum": 2, "end_col": 0}


def test_line_column_range_from_value() -> None:
    assert LineColumnRange.from_value((0, 1, 0, 4)) == LineColumnRange(0, 1, 0, 4)
    assert LineColumnRange.from_value({"lnum": 3, "col": 0, "end_lnum": 3, "end_col": 2}).start_line == 3
    with pytest.raises(ValueError):
        LineColumnRange.from_value({"lnum": 1})
    with pytest.raises(TypeError):
        LineColumnRange.from_value("1:2")


def test_text_range_swaps_and_clamps() -> None:
    assert TextRange(9, 3).to_tuple() == (3, 9)
    assert TextRange(-5, 2).to_tuple() == (0, 2)
    with pytest.raises(ValueError):
        TextRange("a", 2)  # type: ignore[arg-type]
