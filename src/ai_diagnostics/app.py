"""Command line entry point running one analysis per file."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.controller import DiagnosticsController
from .ai.scheduler import JobOutcome
from .ai.transport import Transport
from .editor.diagnostics import DiagnosticStore
from .editor.workspace import DocumentWorkspace
from .services.events import DocumentEventBus
from .services.notifications import Notifier, RecordingNotifier
from .services.settings import Settings, SettingsStore
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


@dataclass(slots=True)
class FileReport:
    """Analysis result for one file named on the command line."""

    path: Path
    document_id: str | None = None
    outcome: JobOutcome | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.outcome is not None and self.outcome.ok

    @property
    def failure_message(self) -> str | None:
        if self.error is not None:
            return self.error
        if self.outcome is None:
            return "Skipped"
        if self.outcome.error is not None:
            return self.outcome.error.message
        return None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "path": str(self.path),
            "status": self.outcome.status if self.outcome is not None else "failed",
            "diagnostics": [finding.to_dict() for finding in (self.outcome.findings if self.outcome else ())],
        }
        message = self.failure_message
        if message is not None:
            payload["error"] = message
        if self.outcome is not None and self.outcome.result is not None:
            payload["dropped"] = self.outcome.result.dropped
        return payload


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the command line tool."""

    level = logging.DEBUG if debug else logging.WARNING
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


async def analyze_files(
    paths: Sequence[Path | str],
    settings: Settings,
    *,
    language: str | None = None,
    transport: Transport | None = None,
    notifier: Notifier | None = None,
) -> List[FileReport]:
    """Analyze every file concurrently and return one report per path, in order."""

    workspace = DocumentWorkspace(bus=DocumentEventBus())
    controller = DiagnosticsController(
        settings,
        workspace,
        DiagnosticStore(),
        notifier or RecordingNotifier(),
        transport=transport,
    )
    loop = asyncio.get_running_loop()
    pending: Dict[str, asyncio.Future[JobOutcome | None]] = {}

    def _resolve(outcome: JobOutcome) -> None:
        future = pending.get(outcome.key)
        if future is not None and not future.done():
            future.set_result(outcome)

    controller.add_outcome_listener(_resolve)
    reports: List[FileReport] = []
    try:
        for raw_path in paths:
            path = Path(raw_path)
            report = FileReport(path=path)
            reports.append(report)
            try:
                document = workspace.open_file(path, language=language)
            except (OSError, UnicodeDecodeError) as exc:
                report.error = f"Cannot read file: {exc}"
                continue
            report.document_id = document.document_id
            future: asyncio.Future[JobOutcome | None] = loop.create_future()
            pending[document.document_id] = future
            if controller.analyze_now(document.document_id) is None and not future.done():
                future.set_result(None)
        documents = list(pending)
        outcomes = await asyncio.gather(*pending.values())
    finally:
        await controller.aclose()

    by_document = dict(zip(documents, outcomes))
    for report in reports:
        if report.document_id is not None:
            report.outcome = by_document.get(report.document_id)
    return reports


def render_text(reports: Sequence[FileReport], *, stream: TextIO, errors: TextIO) -> None:
    for report in reports:
        message = report.failure_message
        if not report.ok and message is not None:
            errors.write(f"{report.path}: error: {message}\n")
            continue
        for finding in report.outcome.findings if report.outcome else ():
            code = f" [{finding.code}]" if finding.code else ""
            stream.write(
                f"{report.path}:{finding.lnum + 1}:{finding.col + 1}: "
                f"{finding.severity.value}: {finding.message}{code}\n"
            )


def render_json(reports: Sequence[FileReport], *, stream: TextIO) -> None:
    json.dump([report.to_dict() for report in reports], stream, indent=2)
    stream.write("\n")


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `ai-diagnostics` console script."""

    args = _parse_cli_args(argv)
    debug = args.debug or _env_flag("AI_DIAGNOSTICS_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("AI_DIAGNOSTICS_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return EXIT_USAGE

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return EXIT_OK

    if not args.files:
        print("No files given; pass one or more paths to analyze.", file=sys.stderr)
        return EXIT_USAGE

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    # Naming files on the command line is an explicit request.
    settings.enabled = True
    settings.show_progress = False

    loop = asyncio.new_event_loop()
    try:
        reports = loop.run_until_complete(analyze_files(args.files, settings, language=args.language))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Interrupted by user.")
        return EXIT_FAILED
    finally:
        _drain_event_loop(loop)
        loop.close()

    if args.json:
        render_json(reports, stream=sys.stdout)
    else:
        render_text(reports, stream=sys.stdout, errors=sys.stderr)
    return EXIT_OK if all(report.ok for report in reports) else EXIT_FAILED


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _drain_event_loop(loop: asyncio.AbstractEventLoop) -> None:
    """Cancel outstanding tasks and shutdown async machinery before closing."""

    if loop.is_closed():
        return

    async def _cleanup() -> None:
        current_task = None
        with contextlib.suppress(RuntimeError):
            current_task = asyncio.current_task(loop=loop)

        tasks = [task for task in asyncio.all_tasks(loop) if not task.done() and task is not current_task]
        if tasks:
            _LOGGER.debug("Canceling %s pending asyncio task(s) before shutdown.", len(tasks))
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        with contextlib.suppress(RuntimeError, NotImplementedError):
            await loop.shutdown_asyncgens()

    try:
        loop.run_until_complete(_cleanup())
    except RuntimeError as exc:  # pragma: no cover - defensive guard
        _LOGGER.debug("Unable to drain asyncio loop: %s", exc)


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ai-diagnostics",
        description="Ask a language model for diagnostics on source files.",
    )
    parser.add_argument("files", nargs="*", metavar="FILE", help="Files to analyze.")
    parser.add_argument(
        "--settings",
        dest="settings_path",
        metavar="PATH",
        help="Override the default ~/.ai_diagnostics/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument("--language", metavar="TAG", help="Language tag to report instead of the file suffix.")
    parser.add_argument("--json", action="store_true", help="Emit findings as JSON.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is dict:
        try:
            payload = json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
        if not isinstance(payload, dict):
            raise ValueError("Dict overrides must be valid JSON objects")
        return {str(key): str(value) for key, value in payload.items()}
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = settings.redacted()
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("AI_DIAGNOSTICS_"))


__all__ = ["FileReport", "analyze_files", "configure_logging", "load_settings", "main", "render_json", "render_text"]
