"""Pure helpers shared across the diagnostics pipeline."""

from .anchors import AnchorResolution, offset_to_position, resolve_anchors
from .ranges import LineColumnRange, Position, TextRange

__all__ = [
    "AnchorResolution",
    "LineColumnRange",
    "Position",
    "TextRange",
    "offset_to_position",
    "resolve_anchors",
]
