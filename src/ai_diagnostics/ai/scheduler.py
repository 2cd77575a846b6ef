"""Per-document debounce, request and timeout scheduling.

Each document key owns a small state machine::

    IDLE --schedule--> DEBOUNCING --timer--> REQUESTING --completion/timeout--> IDLE

A key never holds two debounce timers, two in-flight requests or two
watchdogs, and never a debounce timer together with an in-flight request.
Every trigger bumps the key's generation; a transport completion or watchdog
whose generation is no longer active is discarded, so exactly one terminal
action runs per triggered request. All state lives on the event loop thread.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from ..core.errors import (
    DiagnosticsError,
    EnvelopeError,
    ErrorCode,
    TransportError,
    TransportTimeoutError,
    TransportUnavailableError,
)
from ..services.telemetry import emit
from .client import JobRequest
from .findings import FindingRequest, ParsedResult
from .response_parser import parse_response
from .transport import Transport, TransportHandle, TransportResult

LOGGER = logging.getLogger(__name__)

RequestFactory = Callable[[str], "JobRequest | None"]
DocumentTextProvider = Callable[[str], "str | None"]
OutcomeCallback = Callable[["JobOutcome"], None]


@dataclass(slots=True)
class SchedulerConfig:
    """Timing knobs for the scheduler."""

    debounce_seconds: float = 2.0
    timeout_seconds: float = 30.0

    @classmethod
    def from_milliseconds(cls, debounce_ms: int, timeout_ms: int) -> SchedulerConfig:
        return cls(
            debounce_seconds=max(0.0, debounce_ms / 1000.0),
            timeout_seconds=max(0.001, timeout_ms / 1000.0),
        )


class JobPhase(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    REQUESTING = "requesting"


@dataclass(slots=True, frozen=True)
class JobOutcome:
    """Terminal result of one triggered request."""

    key: str
    generation: int
    status: str
    result: ParsedResult | None = None
    error: DiagnosticsError | None = None
    snapshot: FindingRequest | None = None

    OK = "ok"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def ok(self) -> bool:
        return self.status == self.OK

    @property
    def findings(self) -> tuple:
        return self.result.findings if self.result is not None else ()


@dataclass(slots=True)
class _JobSlot:
    generation: int = 0
    active_generation: int | None = None
    debounce: asyncio.TimerHandle | None = None
    handle: TransportHandle | None = None
    watchdog: asyncio.TimerHandle | None = None
    snapshot: FindingRequest | None = None
    started_at: float = 0.0


class JobScheduler:
    """Coordinates debounced analysis requests for many documents."""

    def __init__(
        self,
        request_factory: RequestFactory,
        transport: Transport,
        *,
        document_text: DocumentTextProvider,
        on_outcome: OutcomeCallback,
        config: SchedulerConfig | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if request_factory is None:
            raise ValueError("request_factory is required")
        self._request_factory = request_factory
        self._transport = transport
        self._document_text = document_text
        self._on_outcome = on_outcome
        self._config = config or SchedulerConfig()
        self._loop = loop
        self._slots: dict[str, _JobSlot] = {}
        self._closed = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @config.setter
    def config(self, value: SchedulerConfig) -> None:
        self._config = value

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule(self, key: str) -> None:
        """(Re)arm the debounce timer for ``key``, retiring any prior work."""

        if self._closed:
            LOGGER.debug("Ignoring schedule(%s) after close", key)
            return
        slot = self._slots.setdefault(key, _JobSlot())
        if self._retire(slot):
            emit("diagnostics.job.cancelled", {"document_id": key, "reason": "rescheduled"})
        delay = self._config.debounce_seconds
        slot.debounce = self.loop.call_later(delay, self._fire, key)
        emit("diagnostics.job.scheduled", {"document_id": key, "debounce_seconds": delay})

    def cancel(self, key: str) -> bool:
        """Stop all pending work for ``key``; returns ``False`` when idle."""

        slot = self._slots.get(key)
        if slot is None or not self._retire(slot):
            return False
        LOGGER.debug("Cancelled diagnostics job for %s", key)
        emit("diagnostics.job.cancelled", {"document_id": key, "reason": "cancelled"})
        return True

    def force_run(self, key: str) -> int | None:
        """Trigger ``key`` immediately, bypassing the debounce delay."""

        if self._closed:
            return None
        self.cancel(key)
        return self._trigger(key)

    def forget(self, key: str) -> None:
        self.cancel(key)
        self._slots.pop(key, None)

    def phase(self, key: str) -> JobPhase:
        slot = self._slots.get(key)
        if slot is None:
            return JobPhase.IDLE
        if slot.debounce is not None:
            return JobPhase.DEBOUNCING
        if slot.active_generation is not None:
            return JobPhase.REQUESTING
        return JobPhase.IDLE

    def generation(self, key: str) -> int:
        slot = self._slots.get(key)
        return slot.generation if slot is not None else 0

    @property
    def active_jobs(self) -> int:
        return sum(1 for slot in self._slots.values() if slot.active_generation is not None)

    @property
    def pending_timers(self) -> int:
        return sum(1 for slot in self._slots.values() if slot.debounce is not None)

    def keys(self) -> list[str]:
        return list(self._slots)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        for key in list(self._slots):
            self.cancel(key)
        self._slots.clear()

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------
    def _fire(self, key: str) -> None:
        slot = self._slots.get(key)
        if slot is None:
            return
        slot.debounce = None
        self._trigger(key)

    def _trigger(self, key: str) -> int | None:
        slot = self._slots.setdefault(key, _JobSlot())
        slot.generation += 1
        generation = slot.generation
        try:
            job = self._request_factory(key)
        except DiagnosticsError as exc:
            LOGGER.debug("Preflight rejected %s: %s", key, exc)
            self._deliver(JobOutcome(key=key, generation=generation, status=JobOutcome.FAILED, error=exc))
            return generation
        if job is None:
            LOGGER.debug("Skipping %s; document is no longer available", key)
            return None

        loop = self.loop
        slot.active_generation = generation
        slot.snapshot = job.snapshot
        slot.started_at = loop.time()
        slot.watchdog = loop.call_later(self._config.timeout_seconds, self._on_timeout, key, generation)
        emit(
            "diagnostics.job.started",
            {"document_id": key, "generation": generation, "line_count": job.snapshot.line_count},
        )
        try:
            callback = functools.partial(self._on_transport_result, key, generation)
            handle = self._transport.send(job.outbound, callback)
        except Exception as exc:  # pragma: no cover - transports report failures through the callback
            LOGGER.exception("Transport refused request for %s", key)
            snapshot = self._finish(slot)
            error = TransportError(message=f"Request failed: {exc}")
            self._deliver(JobOutcome(key, generation, JobOutcome.FAILED, error=error, snapshot=snapshot))
            return generation
        if slot.active_generation == generation:
            slot.handle = handle
        return generation

    # ------------------------------------------------------------------
    # Terminal actions
    # ------------------------------------------------------------------
    def _on_transport_result(self, key: str, generation: int, result: TransportResult) -> None:
        slot = self._slots.get(key)
        if slot is None or slot.active_generation != generation:
            LOGGER.debug("Discarding stale completion for %s (generation %s)", key, generation)
            return
        elapsed = self.loop.time() - slot.started_at
        snapshot = self._finish(slot)
        if not result.ok:
            if result.unavailable:
                error: DiagnosticsError = TransportUnavailableError(message=result.error or "Transport unavailable")
            else:
                error = TransportError(message=result.error or "Request failed", exit_code=result.exit_code)
            outcome = JobOutcome(key, generation, JobOutcome.FAILED, error=error, snapshot=snapshot)
            self._deliver(outcome, elapsed)
            return

        text = self._document_text(key)
        if text is None and snapshot is not None:
            text = snapshot.text
        try:
            parsed = parse_response(result.body, text or "")
        except Exception as exc:
            LOGGER.exception("Failed to parse analysis response for %s", key)
            error = EnvelopeError(
                error_code=ErrorCode.INVALID_ENVELOPE_JSON,
                message="Failed to parse API response",
                details={"reason": str(exc)},
            )
            self._deliver(JobOutcome(key, generation, JobOutcome.FAILED, error=error, snapshot=snapshot), elapsed)
            return
        if parsed.ok:
            outcome = JobOutcome(key, generation, JobOutcome.OK, result=parsed, snapshot=snapshot)
        else:
            LOGGER.warning("Analysis response for %s rejected: %s", key, parsed.message)
            outcome = JobOutcome(key, generation, JobOutcome.FAILED, error=parsed.to_error(), snapshot=snapshot)
        self._deliver(outcome, elapsed)

    def _on_timeout(self, key: str, generation: int) -> None:
        slot = self._slots.get(key)
        if slot is None or slot.active_generation != generation:
            return
        slot.watchdog = None
        snapshot = self._finish(slot)
        seconds = self._config.timeout_seconds
        LOGGER.warning("Analysis of %s timed out after %.1fs", key, seconds)
        error = TransportTimeoutError(details={"timeout_seconds": seconds})
        self._deliver(JobOutcome(key, generation, JobOutcome.TIMEOUT, error=error, snapshot=snapshot), seconds)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _retire(self, slot: _JobSlot) -> bool:
        cancelled = False
        if slot.debounce is not None:
            slot.debounce.cancel()
            slot.debounce = None
            cancelled = True
        if slot.active_generation is not None:
            self._finish(slot)
            cancelled = True
        return cancelled

    def _finish(self, slot: _JobSlot) -> FindingRequest | None:
        """Leave REQUESTING: drop the generation, watchdog and handle."""

        slot.active_generation = None
        if slot.watchdog is not None:
            slot.watchdog.cancel()
            slot.watchdog = None
        handle, slot.handle = slot.handle, None
        if handle is not None and not handle.done:
            handle.cancel()
        snapshot, slot.snapshot = slot.snapshot, None
        return snapshot

    def _deliver(self, outcome: JobOutcome, elapsed: float | None = None) -> None:
        payload: dict[str, Any] = {"document_id": outcome.key, "generation": outcome.generation, "status": outcome.status}
        if elapsed is not None:
            payload["latency_ms"] = round(elapsed * 1000.0, 2)
        if outcome.result is not None:
            payload["findings"] = len(outcome.result)
            payload["dropped"] = outcome.result.dropped
        if outcome.error is not None:
            payload["error"] = outcome.error.error_code
        emit("diagnostics.job.finished", payload)
        try:
            self._on_outcome(outcome)
        except Exception:  # pragma: no cover - listeners must not break the loop
            LOGGER.exception("Outcome handler failed for %s", outcome.key)


__all__ = [
    "JobOutcome",
    "JobPhase",
    "JobRequest",
    "JobScheduler",
    "SchedulerConfig",
]
