"""Tests covering the command line entry point."""

from __future__ import annotations

import asyncio
import io
import json
import stat
import sys
from pathlib import Path

import pytest

from ai_diagnostics import app
from ai_diagnostics.ai.scheduler import JobOutcome
from ai_diagnostics.ai.transport import InMemoryTransport
from ai_diagnostics.core.errors import ConfigError
from ai_diagnostics.services.settings import Settings
from tests.helpers import make_envelope

SOURCE = "def divide(x):\n    return x / 0\n"
DIVIDE_BY_ZERO = make_envelope(
    [
        {
            "start_anchor": "x / 0",
            "end_anchor": "/ 0",
            "severity": "error",
            "message": "Division by zero",
            "code": "ZeroDivision",
        }
    ]
)

posix_only = pytest.mark.skipif(sys.platform.startswith("win"), reason="requires a POSIX shell")


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> list[bool]:
    calls: list[bool] = []
    monkeypatch.setattr(app, "configure_logging", lambda debug=False, *, force=False: calls.append(debug))
    return calls


def _write(tmp_path: Path, name: str, text: str = SOURCE) -> Path:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_coerce_cli_overrides_casts_types() -> None:
    overrides = app._coerce_cli_overrides(
        [
            "debounce_ms=500",
            "enabled=off",
            "temperature=0.3",
            "model = vendor/model ",
            'default_headers={"X-Title": "demo"}',
        ]
    )

    assert overrides == {
        "debounce_ms": 500,
        "enabled": False,
        "temperature": 0.3,
        "model": "vendor/model",
        "default_headers": {"X-Title": "demo"},
    }


@pytest.mark.parametrize("entry", ["bogus=1", "model", "=value", "debounce_ms=soon", "enabled=maybe"])
def test_coerce_cli_overrides_rejects_bad_entries(entry: str) -> None:
    with pytest.raises(ValueError):
        app._coerce_cli_overrides([entry])


def test_main_without_files_is_a_usage_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = app.main(["--settings", str(tmp_path / "settings.json")])

    assert code == app.EXIT_USAGE
    assert "No files given" in capsys.readouterr().err


def test_main_rejects_bad_override(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = app.main(["--settings", str(tmp_path / "settings.json"), "--set", "nope=1", "file.py"])

    assert code == app.EXIT_USAGE
    assert "Invalid --set override: Unknown setting 'nope'." in capsys.readouterr().err


def test_dump_settings_redacts_api_key(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("AI_DIAGNOSTICS_API_KEY", "sk-abcdef")
    settings_path = tmp_path / "settings.json"

    code = app.main(["--settings", str(settings_path), "--set", "model=x/y", "--dump-settings"])

    assert code == app.EXIT_OK
    payload = json.loads(capsys.readouterr().out)
    assert payload["settings"]["api_key"] == "sk*****ef"
    assert payload["settings"]["model"] == "x/y"
    assert payload["meta"]["path"] == str(settings_path)
    assert payload["meta"]["secret_backend"] == "fernet"
    assert payload["meta"]["cli_overrides"] == ["model"]
    assert "AI_DIAGNOSTICS_API_KEY" in payload["meta"]["environment_variables"]


@pytest.mark.asyncio
async def test_analyze_files_reports_findings_in_order(tmp_path: Path) -> None:
    first = _write(tmp_path, "first.py")
    second = _write(tmp_path, "second.py", "ok = True\n")
    transport = InMemoryTransport()
    transport.reply_success(DIVIDE_BY_ZERO, delay=0.02)
    transport.reply_success(make_envelope([]))
    settings = Settings(api_key="k", debounce_ms=10, timeout_ms=1000)

    reports = await app.analyze_files([first, second], settings, transport=transport)

    assert [report.path for report in reports] == [first, second]
    assert all(report.ok for report in reports)
    assert len(reports[0].outcome.findings) == 1
    assert reports[1].outcome.findings == ()
    stream, errors = io.StringIO(), io.StringIO()
    app.render_text(reports, stream=stream, errors=errors)
    assert stream.getvalue() == f"{first}:2:12: error: Division by zero [ZeroDivision]\n"
    assert errors.getvalue() == ""


@pytest.mark.asyncio
async def test_analyze_files_reports_unreadable_files(tmp_path: Path) -> None:
    missing = tmp_path / "missing.py"
    transport = InMemoryTransport()

    reports = await app.analyze_files([missing], Settings(api_key="k"), transport=transport)

    [report] = reports
    assert not report.ok
    assert report.failure_message.startswith("Cannot read file:")
    assert transport.sent == []
    errors = io.StringIO()
    app.render_text(reports, stream=io.StringIO(), errors=errors)
    assert errors.getvalue().startswith(f"{missing}: error: Cannot read file:")


@pytest.mark.asyncio
async def test_analyze_files_without_api_key_fails_fast(tmp_path: Path) -> None:
    path = _write(tmp_path, "calc.py")

    reports = await app.analyze_files([path], Settings(api_key=""), transport=InMemoryTransport())

    [report] = reports
    assert report.outcome is not None
    assert report.outcome.status == JobOutcome.FAILED
    assert isinstance(report.outcome.error, ConfigError)
    assert report.failure_message == "API key not configured"
    assert report.to_dict()["status"] == "failed"


@pytest.mark.asyncio
async def test_analyze_files_uses_language_override(tmp_path: Path) -> None:
    path = _write(tmp_path, "script.txt")
    transport = InMemoryTransport()
    transport.reply_success(make_envelope([]))

    await app.analyze_files([path], Settings(api_key="k"), language="lua", transport=transport)

    assert "following lua code" in transport.requests[0].payload()["messages"][0]["content"]


def test_render_json_includes_errors_and_findings(tmp_path: Path) -> None:
    report = app.FileReport(path=tmp_path / "gone.py", error="Cannot read file: gone")
    stream = io.StringIO()

    app.render_json([report], stream=stream)

    assert json.loads(stream.getvalue()) == [
        {"path": str(tmp_path / "gone.py"), "status": "failed", "diagnostics": [], "error": "Cannot read file: gone"}
    ]


def test_skipped_report_has_failure_message(tmp_path: Path) -> None:
    report = app.FileReport(path=tmp_path / "a.py", document_id="doc")

    assert not report.ok
    assert report.failure_message == "Skipped"


@posix_only
def test_main_runs_curl_end_to_end(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], _quiet_logging: list[bool]
) -> None:
    body_file = tmp_path / "response.json"
    body_file.write_text(DIVIDE_BY_ZERO, encoding="utf-8")
    script = tmp_path / "fake-curl"
    script.write_text(f'#!/bin/sh\ncat "{body_file}"\n', encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    source = _write(tmp_path, "calc.py")

    code = app.main(
        [
            "--settings",
            str(tmp_path / "settings.json"),
            "--set",
            "api_key=sk-test",
            "--set",
            f"curl_executable={script}",
            "--json",
            str(source),
        ]
    )

    assert code == app.EXIT_OK
    [entry] = json.loads(capsys.readouterr().out)
    assert entry["status"] == "ok"
    assert entry["dropped"] == 0
    assert entry["diagnostics"][0]["lnum"] == 1
    assert entry["diagnostics"][0]["col"] == 11
    assert entry["diagnostics"][0]["source"] == "ai-diagnostics"
    assert _quiet_logging == [False]


def test_main_exits_non_zero_when_a_file_fails(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = app.main(
        ["--settings", str(tmp_path / "settings.json"), "--set", "api_key=k", str(tmp_path / "missing.py")]
    )

    assert code == app.EXIT_FAILED
    assert "error: Cannot read file" in capsys.readouterr().err


def test_drain_event_loop_cancels_pending_tasks() -> None:
    loop = asyncio.new_event_loop()
    cancelled = {"called": False}

    async def pending() -> None:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled["called"] = True
            raise

    loop.create_task(pending())
    loop.run_until_complete(asyncio.sleep(0))

    app._drain_event_loop(loop)
    loop.close()

    assert cancelled["called"]


def test_drain_event_loop_ignores_closed_loop() -> None:
    loop = asyncio.new_event_loop()
    loop.close()

    app._drain_event_loop(loop)
