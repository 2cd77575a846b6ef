"""Analysis client, response parsing and job scheduling."""

from .client import ClientSettings, OutboundRequest, build_outbound_request
from .findings import FindingFormat, ParsedResult, ParseFailure, RangedFinding, Severity
from .response_parser import parse_response

__all__ = [
    "ClientSettings",
    "FindingFormat",
    "OutboundRequest",
    "ParseFailure",
    "ParsedResult",
    "RangedFinding",
    "Severity",
    "build_outbound_request",
    "parse_response",
]
