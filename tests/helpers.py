"""Shared test helpers.

Import from here instead of duplicating these builders in individual test files.
"""

from __future__ import annotations

import json
from typing import Any


def make_envelope(diagnostics: list[dict[str, Any]] | None = None, *, content: str | None = None) -> str:
    """Wrap findings the way the completion service does.

    Example:
        from tests.helpers import make_envelope

        body = make_envelope([{"start_anchor": "x", "end_anchor": "y"}])
    """

    if content is None:
        content = json.dumps({"diagnostics": diagnostics or []})
    return json.dumps({"choices": [{"message": {"role": "assistant", "content": content}}]})
