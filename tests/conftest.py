"""Shared pytest fixtures."""

from __future__ import annotations

import os
from typing import Callable

import pytest

from ai_diagnostics.editor.diagnostics import DiagnosticStore
from ai_diagnostics.editor.workspace import DocumentWorkspace
from ai_diagnostics.services.events import DocumentEventBus
from ai_diagnostics.services.notifications import RecordingNotifier
from ai_diagnostics.services.settings import Settings
from tests.helpers import make_envelope


@pytest.fixture
def envelope() -> Callable[..., str]:
    return make_envelope


@pytest.fixture
def bus() -> DocumentEventBus:
    return DocumentEventBus()


@pytest.fixture
def workspace(bus: DocumentEventBus) -> DocumentWorkspace:
    return DocumentWorkspace(bus=bus)


@pytest.fixture
def sink() -> DiagnosticStore:
    return DiagnosticStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def settings() -> Settings:
    return Settings(api_key="test-key", debounce_ms=10, timeout_ms=500, show_progress=True)


@pytest.fixture(autouse=True)
def _isolate_home(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> None:
    for name in [key for key in os.environ if key.startswith("AI_DIAGNOSTICS_")]:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AI_DIAGNOSTICS_LOG_DIR", str(tmp_path_factory.mktemp("logs")))
