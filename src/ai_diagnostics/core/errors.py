"""Standardized error types for the diagnostics pipeline.

Every failure the pipeline can hit maps onto one class here so callers can
render a consistent notification and serialize the failure for telemetry.
Only transport, envelope and payload failures reach the user; element
failures are dropped per finding and merely logged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Constants for error codes carried by :class:`DiagnosticsError`."""

    # Preflight errors
    MISSING_CREDENTIAL = "missing_credential"
    DOCUMENT_TOO_LARGE = "document_too_large"

    # Transport errors
    TRANSPORT_FAILED = "transport_failed"
    TRANSPORT_UNAVAILABLE = "transport_unavailable"
    TIMEOUT = "timeout"

    # Envelope errors
    INVALID_ENVELOPE_JSON = "invalid_envelope_json"
    SERVICE_ERROR = "service_error"
    UNEXPECTED_ENVELOPE = "unexpected_envelope"

    # Payload errors
    INVALID_PAYLOAD_JSON = "invalid_payload_json"
    MISSING_DIAGNOSTICS = "missing_diagnostics"

    # Element errors
    INVALID_FINDING = "invalid_finding"
    UNRESOLVED_ANCHOR = "unresolved_anchor"
    LOCATOR_OUT_OF_RANGE = "locator_out_of_range"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass
class DiagnosticsError(Exception):
    """Base exception class for all diagnostics pipeline errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for recovery.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    user_visible: ClassVar[bool] = True
    level: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a dictionary for telemetry payloads."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# -----------------------------------------------------------------------------
# Preflight Errors
# -----------------------------------------------------------------------------

@dataclass
class ConfigError(DiagnosticsError):
    """Raised when the service credential is not configured."""

    error_code: str = field(default=ErrorCode.MISSING_CREDENTIAL)
    message: str = field(default="API key not configured")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Set api_key in settings or export AI_DIAGNOSTICS_API_KEY")


@dataclass
class SizeLimitError(DiagnosticsError):
    """Raised when a document exceeds the configured line limit."""

    error_code: str = field(default=ErrorCode.DOCUMENT_TOO_LARGE)
    message: str = field(default="File too large")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Raise max_file_size or analyze a smaller file")

    line_count: int = 0
    max_lines: int = 0

    level: ClassVar[str] = "warning"

    def __post_init__(self) -> None:
        if self.line_count and self.message == "File too large":
            self.message = f"File too large ({self.line_count} lines, max {self.max_lines})"
        super().__post_init__()


# -----------------------------------------------------------------------------
# Transport Errors
# -----------------------------------------------------------------------------

@dataclass
class TransportError(DiagnosticsError):
    """Raised when the outbound request fails."""

    error_code: str = field(default=ErrorCode.TRANSPORT_FAILED)
    message: str = field(default="Request failed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    exit_code: int | None = None


@dataclass
class TransportUnavailableError(TransportError):
    """Raised when the transport could not be started at all."""

    error_code: str = field(default=ErrorCode.TRANSPORT_UNAVAILABLE)
    message: str = field(default="Transport unavailable")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Install curl or switch the transport setting to 'httpx'")


@dataclass
class TransportTimeoutError(TransportError):
    """Raised when the watchdog expires before the transport completes."""

    error_code: str = field(default=ErrorCode.TIMEOUT)
    message: str = field(default="Request timed out")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Raise timeout_ms or retry later")

    level: ClassVar[str] = "warning"


# -----------------------------------------------------------------------------
# Response Errors
# -----------------------------------------------------------------------------

@dataclass
class EnvelopeError(DiagnosticsError):
    """Raised when the outer service response cannot be used."""

    error_code: str = field(default=ErrorCode.UNEXPECTED_ENVELOPE)
    message: str = field(default="Unexpected API response format")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")


@dataclass
class PayloadError(DiagnosticsError):
    """Raised when the inner findings document cannot be used."""

    error_code: str = field(default=ErrorCode.MISSING_DIAGNOSTICS)
    message: str = field(default="Response missing 'diagnostics' array")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")


@dataclass
class ElementError(DiagnosticsError):
    """A single finding failed validation or resolution; never surfaced."""

    error_code: str = field(default=ErrorCode.INVALID_FINDING)
    message: str = field(default="Invalid finding")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    index: int | None = None

    user_visible: ClassVar[bool] = False


__all__ = [
    "ErrorCode",
    "DiagnosticsError",
    "ConfigError",
    "SizeLimitError",
    "TransportError",
    "TransportUnavailableError",
    "TransportTimeoutError",
    "EnvelopeError",
    "PayloadError",
    "ElementError",
]
