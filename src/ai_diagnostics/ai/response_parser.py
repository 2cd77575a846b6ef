"""Decode completion responses into ranged findings.

The service wraps its answer twice: an outer completions envelope whose first
choice carries a ``content`` string, and inside that string a JSON document
``{"diagnostics": [...]}``. Envelope and payload problems fail the whole
response; problems with a single finding only drop that finding.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Mapping

from jsonschema import Draft7Validator

from ..core.anchors import normalize_newlines, resolve_anchors
from ..core.errors import ElementError, ErrorCode
from ..core.ranges import LineColumnRange
from .findings import (
    FINDING_SOURCE,
    AnchorFinding,
    Finding,
    LocatorFinding,
    ParseFailure,
    ParseOutcome,
    ParsedResult,
    RangedFinding,
    Severity,
)

LOGGER = logging.getLogger(__name__)

__all__ = [
    "ENVELOPE_SCHEMA",
    "PAYLOAD_SCHEMA",
    "ANCHOR_FINDING_SCHEMA",
    "LOCATOR_FINDING_SCHEMA",
    "decode_finding",
    "extract_content",
    "parse_findings_payload",
    "parse_response",
    "resolve_finding",
]

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(?P<body>.*?)\s*```$", re.IGNORECASE | re.DOTALL)

ENVELOPE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["choices"],
    "properties": {
        "choices": {
            "type": "array",
            "minItems": 1,
            "items": [
                {
                    "type": "object",
                    "required": ["message"],
                    "properties": {
                        "message": {
                            "type": "object",
                            "required": ["content"],
                            "properties": {"content": {"type": "string"}},
                        }
                    },
                }
            ],
        }
    },
}

PAYLOAD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["diagnostics"],
    "properties": {"diagnostics": {"type": "array"}},
}

_COMMON_FINDING_PROPERTIES: dict[str, Any] = {
    "severity": {},
    "message": {},
    "code": {},
}

ANCHOR_FINDING_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["start_anchor", "end_anchor"],
    "properties": {
        "start_anchor": {"type": "string", "minLength": 1},
        "end_anchor": {"type": "string", "minLength": 1},
        **_COMMON_FINDING_PROPERTIES,
    },
}

LOCATOR_FINDING_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["line"],
    "properties": {
        "line": {"type": "number", "minimum": 1},
        "column": {"type": ["number", "null"], "minimum": 1},
        "end_line": {"type": ["number", "null"], "minimum": 1},
        "end_column": {"type": ["number", "null"], "minimum": 1},
        **_COMMON_FINDING_PROPERTIES,
    },
}

_ENVELOPE_VALIDATOR = Draft7Validator(ENVELOPE_SCHEMA)
_PAYLOAD_VALIDATOR = Draft7Validator(PAYLOAD_SCHEMA)
_ANCHOR_VALIDATOR = Draft7Validator(ANCHOR_FINDING_SCHEMA)
_LOCATOR_VALIDATOR = Draft7Validator(LOCATOR_FINDING_SCHEMA)


def parse_response(raw_body: str | bytes, document_text: str, *, source: str = FINDING_SOURCE) -> ParseOutcome:
    """Return ranged findings for ``raw_body`` or an explicit :class:`ParseFailure`.

    Anchors are resolved against ``document_text``, which should be the live
    document content at the time the response arrives. Never raises.
    """

    content = extract_content(raw_body)
    if isinstance(content, ParseFailure):
        return content
    return parse_findings_payload(content, document_text, source=source)


def extract_content(raw_body: str | bytes) -> str | ParseFailure:
    """Return the ``choices[0].message.content`` string of the envelope."""

    if isinstance(raw_body, bytes):
        raw_body = raw_body.decode("utf-8", errors="replace")
    try:
        decoded = json.loads(raw_body)
    except (ValueError, TypeError, RecursionError):
        return ParseFailure.envelope(ErrorCode.INVALID_ENVELOPE_JSON, "Failed to parse API response")

    if isinstance(decoded, Mapping) and decoded.get("error") is not None:
        return ParseFailure.envelope(ErrorCode.SERVICE_ERROR, f"API error - {_service_error_message(decoded['error'])}")

    if not _ENVELOPE_VALIDATOR.is_valid(decoded):
        return ParseFailure.envelope(ErrorCode.UNEXPECTED_ENVELOPE, "Unexpected API response format")
    return decoded["choices"][0]["message"]["content"]


def parse_findings_payload(content: str, document_text: str, *, source: str = FINDING_SOURCE) -> ParseOutcome:
    """Decode the inner ``{"diagnostics": [...]}`` document and resolve it."""

    try:
        payload = json.loads(_strip_code_fence(content))
    except (ValueError, RecursionError):
        return ParseFailure.payload(ErrorCode.INVALID_PAYLOAD_JSON, "Invalid JSON response")
    if not _PAYLOAD_VALIDATOR.is_valid(payload):
        return ParseFailure.payload(ErrorCode.MISSING_DIAGNOSTICS, "Response missing 'diagnostics' array")

    text = normalize_newlines(document_text or "")
    findings: list[RangedFinding] = []
    dropped = 0
    for index, item in enumerate(payload["diagnostics"]):
        try:
            finding = decode_finding(item, index=index)
            findings.append(resolve_finding(finding, text, index=index, source=source))
        except ElementError as exc:
            dropped += 1
            LOGGER.debug("Skipping finding %s: %s", index, exc)
    if dropped:
        LOGGER.info("Dropped %s of %s finding(s) that could not be placed", dropped, len(payload["diagnostics"]))
    return ParsedResult.from_findings(findings, dropped=dropped)


def decode_finding(item: Any, *, index: int | None = None) -> Finding:
    """Decode one array element into an anchor-pair or direct-locator variant.

    The variant is picked by which locating fields are present; anchor keys
    take precedence over ``line``.
    """

    if not isinstance(item, Mapping):
        raise ElementError(message="Finding is not an object", index=index)
    severity = Severity.coerce(item.get("severity"))
    message = item.get("message")
    message = message if isinstance(message, str) else ""
    code = _coerce_code(item.get("code"))

    if "start_anchor" in item or "end_anchor" in item:
        if not _ANCHOR_VALIDATOR.is_valid(item):
            raise ElementError(message="Anchor finding requires start_anchor and end_anchor strings", index=index)
        return AnchorFinding(
            start_anchor=item["start_anchor"],
            end_anchor=item["end_anchor"],
            severity=severity,
            message=message,
            code=code,
        )
    if "line" in item:
        if not _LOCATOR_VALIDATOR.is_valid(item):
            raise ElementError(message="Locator finding requires a positive line number", index=index)
        try:
            return LocatorFinding(
                line=int(item["line"]),
                column=_optional_int(item.get("column")),
                end_line=_optional_int(item.get("end_line")),
                end_column=_optional_int(item.get("end_column")),
                severity=severity,
                message=message,
                code=code,
            )
        except (OverflowError, ValueError) as exc:
            raise ElementError(message=f"Locator is not a finite number: {exc}", index=index) from exc
    raise ElementError(message="Finding has neither anchors nor a line locator", index=index)


def resolve_finding(
    finding: Finding, text: str, *, index: int | None = None, source: str = FINDING_SOURCE
) -> RangedFinding:
    """Resolve ``finding`` against ``text`` or raise :class:`ElementError`."""

    if isinstance(finding, AnchorFinding):
        resolution = resolve_anchors(
            text, normalize_newlines(finding.start_anchor), normalize_newlines(finding.end_anchor)
        )
        if resolution.range is None:
            raise ElementError(
                error_code=ErrorCode.UNRESOLVED_ANCHOR,
                message=resolution.reason or "anchor not found",
                index=index,
            )
        span = resolution.range
    else:
        span = _locator_range(finding, text, index=index)
    return RangedFinding(
        range=span,
        severity=finding.severity,
        message=finding.message,
        code=finding.code,
        source=source,
    )


def _locator_range(finding: LocatorFinding, text: str, *, index: int | None) -> LineColumnRange:
    lines = text.split("\n")
    start_line = finding.line - 1
    if start_line >= len(lines):
        raise ElementError(
            error_code=ErrorCode.LOCATOR_OUT_OF_RANGE,
            message=f"line {finding.line} is past the end of the document ({len(lines)} lines)",
            index=index,
        )
    start_column = min((finding.column or 1) - 1, len(lines[start_line]))
    end_line = start_line
    if finding.end_line is not None:
        end_line = min(max(finding.end_line - 1, start_line), len(lines) - 1)
    if finding.end_column is not None:
        end_column = min(finding.end_column, len(lines[end_line]))
    else:
        end_column = len(lines[end_line])
    if end_line == start_line and end_column < start_column:
        end_column = start_column
    return LineColumnRange(start_line, start_column, end_line, end_column)


def _strip_code_fence(content: str) -> str:
    stripped = content.strip()
    match = _CODE_FENCE_RE.match(stripped)
    if match:
        return match.group("body")
    return stripped


def _service_error_message(error: Any) -> str:
    if isinstance(error, Mapping):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    elif isinstance(error, str) and error:
        return error
    return "unknown"


def _coerce_code(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, int):
        return str(value)
    return None


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    return int(value)
