"""Prompt templates asking the service for structured findings."""

from __future__ import annotations

from .findings import FindingFormat

ANALYSIS_TEMPERATURE = 0.1


def build_prompt(content: str, language: str, *, finding_format: FindingFormat | str = FindingFormat.ANCHORS) -> str:
    """Return the analysis prompt embedding the document ``content``.

    ``finding_format`` selects how the service is told to locate each
    finding: verbatim anchors (default) or 1-based line/column numbers.
    """

    fmt = FindingFormat(finding_format)
    language = (language or "").strip() or "text"
    if fmt is FindingFormat.LOCATOR:
        return _locator_prompt(content, language)
    return _anchor_prompt(content, language)


def _anchor_prompt(content: str, language: str) -> str:
    return f"""You are a code analysis tool. Analyze the following {language} code and identify potential issues.

Respond ONLY with valid JSON in this exact format (no markdown, no extra text):
{{
    "diagnostics": [
        {{
            "start_anchor": "<verbatim snippet start>",
            "end_anchor": "<verbatim snippet end>",
            "severity": "<error|warning|info|hint>",
            "message": "<description>",
            "code": "<optional_code>"
        }}
    ]
}}

Rules:
{_shared_rules()}
- Anchors must be verbatim substrings from the code
- Anchors should be short but unique; prefer including surrounding context to avoid duplicates

Code to analyze:
{content}"""


def _locator_prompt(content: str, language: str) -> str:
    return f"""You are a code analysis tool. Analyze the following {language} code and identify potential issues.

Respond ONLY with valid JSON in this exact format (no markdown, no extra text):
{{
    "diagnostics": [
        {{
            "line": <1-based line number>,
            "column": <optional 1-based column>,
            "end_line": <optional 1-based end line>,
            "end_column": <optional 1-based end column>,
            "severity": "<error|warning|info|hint>",
            "message": "<description>",
            "code": "<optional_code>"
        }}
    ]
}}

Rules:
{_shared_rules()}
- Line and column numbers start at 1 and refer to the code exactly as given

Code to analyze:
{content}"""


def _shared_rules() -> str:
    return """- severity must be exactly: error, warning, info, or hint
- Focus on bugs, performance issues, and best practice violations
- If no issues found, return {"diagnostics": []}"""


__all__ = ["ANALYSIS_TEMPERATURE", "build_prompt"]
