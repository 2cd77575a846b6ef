"""Build OpenAI-compatible completion requests for the analysis service."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from .findings import FindingFormat, FindingRequest
from .prompts import ANALYSIS_TEMPERATURE, build_prompt

LOGGER = logging.getLogger(__name__)
COMPLETIONS_PATH = "/chat/completions"


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to address the completion endpoint."""

    base_url: str
    api_key: str
    model: str
    temperature: float | None = ANALYSIS_TEMPERATURE
    finding_format: FindingFormat = FindingFormat.ANCHORS
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}{COMPLETIONS_PATH}"


@dataclass(slots=True, frozen=True)
class OutboundRequest:
    """A fully materialised HTTP POST handed to a transport."""

    endpoint: str
    headers: tuple[tuple[str, str], ...]
    body: str
    method: str = "POST"
    document_id: str | None = None

    def header_lines(self) -> List[str]:
        """Return headers in ``Name: value`` form for command line clients."""

        return [f"{name}: {value}" for name, value in self.headers]

    def header_dict(self) -> Dict[str, str]:
        return dict(self.headers)

    def payload(self) -> Dict[str, Any]:
        return json.loads(self.body)


@dataclass(slots=True, frozen=True)
class JobRequest:
    """Snapshot plus the outbound request built from it."""

    snapshot: FindingRequest
    outbound: OutboundRequest = field(repr=False)


def build_chat_payload(settings: ClientSettings, snapshot: FindingRequest) -> Dict[str, Any]:
    prompt = build_prompt(snapshot.text, snapshot.language, finding_format=settings.finding_format)
    payload: Dict[str, Any] = {
        "model": settings.model,
        "messages": [{"role": "user", "content": prompt}],
    }
    if settings.temperature is not None:
        payload["temperature"] = settings.temperature
    return payload


def build_outbound_request(settings: ClientSettings, snapshot: FindingRequest) -> OutboundRequest:
    """Return the POST request asking the service to analyze ``snapshot``."""

    payload = build_chat_payload(settings, snapshot)
    headers: Dict[str, str] = {
        "Authorization": f"Bearer {settings.api_key}",
        "Content-Type": "application/json",
    }
    if settings.default_headers:
        for name, value in settings.default_headers.items():
            headers.setdefault(name, value)
    body = json.dumps(payload, ensure_ascii=False)
    LOGGER.debug(
        "Built completion request for %s via %s (%s chars)",
        snapshot.document_id,
        settings.model,
        len(body),
    )
    if settings.debug_logging:
        LOGGER.debug("Completion payload: %s", body)
    return OutboundRequest(
        endpoint=settings.endpoint,
        headers=tuple(headers.items()),
        body=body,
        document_id=snapshot.document_id,
    )


__all__ = [
    "COMPLETIONS_PATH",
    "ClientSettings",
    "JobRequest",
    "OutboundRequest",
    "build_chat_payload",
    "build_outbound_request",
]
