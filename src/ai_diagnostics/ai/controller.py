"""Façade wiring document events and user commands to the job scheduler."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, List

from ..core.errors import ConfigError, DiagnosticsError, SizeLimitError
from ..editor.diagnostics import DiagnosticSink
from ..editor.workspace import DocumentWorkspace
from ..services.events import (
    DocumentClosedEvent,
    DocumentEvent,
    DocumentEventBus,
    DocumentSavedEvent,
)
from ..services.notifications import NotificationLevel, Notifier
from .client import JobRequest, build_outbound_request
from .scheduler import JobOutcome, JobPhase, JobScheduler
from .transport import Transport, create_transport

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from ..services.settings import Settings

LOGGER = logging.getLogger(__name__)

OutcomeListener = Callable[[JobOutcome], None]


@dataclass(slots=True, frozen=True)
class ControllerStatus:
    """Point-in-time summary shown by the status command."""

    enabled: bool
    model: str
    debounce_ms: int
    max_file_size: int
    active_jobs: int
    pending_timers: int
    transport: str = "curl"
    finding_format: str = "anchors"

    def as_text(self) -> str:
        lines = [
            "AI Diagnostics Status:",
            f"    Enabled: {str(self.enabled).lower()}",
            f"    Model: {self.model}",
            f"    Debounce: {self.debounce_ms}ms",
            f"    Max file size: {self.max_file_size} lines",
            f"    Active jobs: {self.active_jobs}",
            f"    Pending timers: {self.pending_timers}",
            f"    Transport: {self.transport}",
            f"    Finding format: {self.finding_format}",
        ]
        return "\n".join(lines)


class DiagnosticsController:
    """Runs analysis for saved documents and publishes the findings."""

    def __init__(
        self,
        settings: Settings,
        documents: DocumentWorkspace,
        sink: DiagnosticSink,
        notifier: Notifier,
        *,
        transport: Transport | None = None,
        bus: DocumentEventBus | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._settings = settings
        self._documents = documents
        self._sink = sink
        self._notifier = notifier
        self._owns_transport = transport is None
        self._transport = transport if transport is not None else create_transport(settings)
        self._bus = bus or documents.bus
        self._client_settings = settings.to_client_settings()
        self._scheduler = JobScheduler(
            self._build_request,
            self._transport,
            document_text=documents.text,
            on_outcome=self._handle_outcome,
            config=settings.to_scheduler_config(),
            loop=loop,
        )
        self._listeners: List[OutcomeListener] = []
        self._credential_reported = False
        self._attached = False
        self._closed = False

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------
    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def scheduler(self) -> JobScheduler:
        return self._scheduler

    @property
    def namespace(self) -> str:
        return self._settings.namespace

    def attach(self) -> None:
        """Subscribe to document lifecycle events."""

        if self._attached:
            return
        self._bus.subscribe(DocumentSavedEvent, self._on_document_saved)
        self._bus.subscribe(DocumentClosedEvent, self._on_document_closed)
        self._attached = True
        if not self._settings.api_key:
            self._notify("Warning - API key not set", NotificationLevel.WARNING)

    def detach(self) -> None:
        if not self._attached:
            return
        self._bus.unsubscribe(DocumentSavedEvent, self._on_document_saved)
        self._bus.unsubscribe(DocumentClosedEvent, self._on_document_closed)
        self._attached = False

    def add_outcome_listener(self, listener: OutcomeListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_outcome_listener(self, listener: OutcomeListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def update_settings(self, settings: Settings) -> None:
        """Swap configuration; the transport chosen at construction is kept."""

        if settings.transport != self._settings.transport and self._owns_transport:
            LOGGER.info("Transport change to %s applies after restart", settings.transport)
        self._settings = settings
        self._client_settings = settings.to_client_settings()
        self._scheduler.config = settings.to_scheduler_config()
        self._credential_reported = False

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.detach()
        await self._scheduler.aclose()
        if self._owns_transport:
            await self._transport.aclose()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def toggle(self) -> bool:
        enabled = not self._settings.enabled
        self._settings.enabled = enabled
        self._notify("Enabled" if enabled else "Disabled")
        return enabled

    def schedule(self, document_id: str) -> None:
        if self._settings.enabled and self._documents.is_open(document_id):
            self._scheduler.schedule(document_id)

    def analyze_now(self, document_id: str) -> int | None:
        """Cancel pending work for the document and analyze it immediately."""

        return self._scheduler.force_run(document_id)

    def clear(self, document_id: str) -> None:
        self._scheduler.cancel(document_id)
        self._sink.reset(self.namespace, document_id)
        self._notify("Cleared")

    def phase(self, document_id: str) -> JobPhase:
        return self._scheduler.phase(document_id)

    def status(self) -> ControllerStatus:
        settings = self._settings
        return ControllerStatus(
            enabled=settings.enabled,
            model=settings.model,
            debounce_ms=settings.debounce_ms,
            max_file_size=settings.max_file_size,
            active_jobs=self._scheduler.active_jobs,
            pending_timers=self._scheduler.pending_timers,
            transport=settings.transport,
            finding_format=settings.finding_format,
        )

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------
    def _on_document_saved(self, event: DocumentEvent) -> None:
        if self._closed:
            return
        self.schedule(event.document_id)

    def _on_document_closed(self, event: DocumentEvent) -> None:
        self._scheduler.forget(event.document_id)
        self._sink.reset(self.namespace, event.document_id)

    # ------------------------------------------------------------------
    # Scheduler callbacks
    # ------------------------------------------------------------------
    def _build_request(self, document_id: str) -> JobRequest | None:
        settings = self._settings
        if not settings.enabled:
            LOGGER.debug("Diagnostics disabled; skipping %s", document_id)
            return None
        document = self._documents.get(document_id)
        if document is None:
            return None
        if not settings.api_key:
            raise ConfigError()
        line_count = document.line_count
        if line_count > settings.max_file_size:
            raise SizeLimitError(line_count=line_count, max_lines=settings.max_file_size)
        snapshot = document.snapshot()
        if settings.show_progress:
            self._notify("Analyzing...")
        return JobRequest(snapshot=snapshot, outbound=build_outbound_request(self._client_settings, snapshot))

    def _handle_outcome(self, outcome: JobOutcome) -> None:
        if outcome.ok and outcome.result is not None:
            self._publish(outcome)
        elif outcome.error is not None:
            self._report_error(outcome.error)
        for listener in list(self._listeners):
            try:
                listener(outcome)
            except Exception:  # pragma: no cover - listener isolation
                LOGGER.exception("Outcome listener failed for %s", outcome.key)

    def _publish(self, outcome: JobOutcome) -> None:
        assert outcome.result is not None
        if not self._documents.is_open(outcome.key):
            LOGGER.debug("Document %s closed before results arrived", outcome.key)
            return
        findings = outcome.result.findings
        self._sink.set(self.namespace, outcome.key, findings)
        if self._settings.show_progress:
            if findings:
                self._notify(f"Found {len(findings)} issue(s)")
            else:
                self._notify("No issues found")

    def _report_error(self, error: DiagnosticsError) -> None:
        if not error.user_visible:
            return
        if isinstance(error, ConfigError):
            if self._credential_reported:
                return
            self._credential_reported = True
        level = NotificationLevel.from_error_level(error.level)
        self._notify(error.message, level)

    def _notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        try:
            self._notifier.notify(message, level)
        except Exception:  # pragma: no cover - notifier isolation
            LOGGER.exception("Notifier failed")


__all__ = ["ControllerStatus", "DiagnosticsController", "OutcomeListener"]
