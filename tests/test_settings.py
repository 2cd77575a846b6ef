"""Tests for settings persistence, overrides and validation."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from ai_diagnostics.ai.findings import FindingFormat
from ai_diagnostics.services.settings import (
    SecretVault,
    Settings,
    SettingsStore,
    apply_overrides,
    redact_secret,
    validate_settings,
)


@pytest.fixture
def store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json")


def test_defaults_match_documented_values() -> None:
    settings = Settings()

    assert settings.api_key == ""
    assert settings.base_url == "https://openrouter.ai/api/v1"
    assert settings.model == "anthropic/claude-3.5-sonnet"
    assert settings.enabled is True
    assert settings.debounce_ms == 2000
    assert settings.max_file_size == 10000
    assert settings.timeout_ms == 30000
    assert settings.show_progress is True
    assert settings.transport == "curl"
    assert settings.finding_format == "anchors"
    assert settings.namespace == "ai_diagnostics"


def test_missing_file_loads_defaults(store: SettingsStore) -> None:
    assert store.load() == Settings()
    assert not store.path.exists()


def test_round_trip_encrypts_api_key(store: SettingsStore) -> None:
    store.save(Settings(api_key="sk-secret-value", model="custom/model", debounce_ms=750))

    raw = store.path.read_text(encoding="utf-8")
    payload = json.loads(raw)
    assert "sk-secret-value" not in raw
    assert "api_key" not in payload
    assert payload["api_key_ciphertext"].startswith("fernet:")
    assert payload["version"] == 1
    assert payload["secret_backend"] == "fernet"

    loaded = SettingsStore(store.path).load()
    assert loaded.api_key == "sk-secret-value"
    assert loaded.model == "custom/model"
    assert loaded.debounce_ms == 750


def test_legacy_plaintext_key_is_migrated(store: SettingsStore) -> None:
    store.path.write_text(json.dumps({"api_key": "sk-legacy", "model": "old/model"}), encoding="utf-8")

    loaded = store.load()

    assert loaded.api_key == "sk-legacy"
    assert loaded.model == "old/model"
    payload = json.loads(store.path.read_text(encoding="utf-8"))
    assert "api_key" not in payload
    assert payload["api_key_ciphertext"].startswith("fernet:")
    assert payload["version"] == 1


def test_unreadable_ciphertext_drops_key(store: SettingsStore, caplog: pytest.LogCaptureFixture) -> None:
    store.path.write_text(
        json.dumps({"api_key_ciphertext": "fernet:not-a-token", "version": 1}),
        encoding="utf-8",
    )

    with caplog.at_level(logging.WARNING):
        loaded = store.load()

    assert loaded.api_key == ""
    assert "Unable to decrypt API key" in caplog.text


def test_invalid_json_falls_back_to_defaults(store: SettingsStore, caplog: pytest.LogCaptureFixture) -> None:
    store.path.write_text("{not json", encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        loaded = store.load()

    assert loaded == Settings()
    assert "not valid JSON" in caplog.text


def test_unknown_file_keys_are_ignored(store: SettingsStore) -> None:
    store.path.write_text(json.dumps({"model": "x/y", "legacy_option": True, "version": 1}), encoding="utf-8")

    assert store.load().model == "x/y"


def test_environment_overrides(store: SettingsStore, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AI_DIAGNOSTICS_API_KEY", "env-key")
    monkeypatch.setenv("AI_DIAGNOSTICS_DEBOUNCE_MS", "500")
    monkeypatch.setenv("AI_DIAGNOSTICS_ENABLED", "0")
    monkeypatch.setenv("AI_DIAGNOSTICS_TEMPERATURE", "0.4")
    monkeypatch.setenv("AI_DIAGNOSTICS_TRANSPORT", "httpx")

    loaded = store.load()

    assert loaded.api_key == "env-key"
    assert loaded.debounce_ms == 500
    assert loaded.enabled is False
    assert loaded.temperature == 0.4
    assert loaded.transport == "httpx"


def test_invalid_integer_environment_value_is_ignored(
    store: SettingsStore, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setenv("AI_DIAGNOSTICS_TIMEOUT_MS", "soon")

    with caplog.at_level(logging.WARNING):
        loaded = store.load()

    assert loaded.timeout_ms == 30000
    assert "AI_DIAGNOSTICS_TIMEOUT_MS" in caplog.text


def test_environment_wins_over_command_line(store: SettingsStore, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AI_DIAGNOSTICS_MODEL", "env/model")

    loaded = store.load(overrides={"model": "cli/model", "max_file_size": 20})

    assert loaded.model == "env/model"
    assert loaded.max_file_size == 20


def test_invalid_values_fall_back_to_defaults(store: SettingsStore, caplog: pytest.LogCaptureFixture) -> None:
    store.path.write_text(
        json.dumps(
            {
                "debounce_ms": -1,
                "max_file_size": "lots",
                "transport": "HTTPX",
                "finding_format": "Locator",
                "namespace": " ",
                "version": 1,
            }
        ),
        encoding="utf-8",
    )

    with caplog.at_level(logging.WARNING):
        loaded = store.load()

    assert loaded.debounce_ms == 2000
    assert loaded.max_file_size == 10000
    assert loaded.transport == "httpx"
    assert loaded.finding_format == "locator"
    assert loaded.namespace == "ai_diagnostics"
    assert "Invalid debounce_ms" in caplog.text


def test_unknown_transport_is_rejected() -> None:
    assert validate_settings(Settings(transport="telnet")).transport == "curl"
    assert validate_settings(Settings(finding_format="xml")).finding_format == "anchors"


def test_apply_overrides_skips_unknown_and_none(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        result = apply_overrides(Settings(), {"model": "a/b", "bogus": 1, "base_url": None}, source="CLI")

    assert result.model == "a/b"
    assert result.base_url == Settings().base_url
    assert "Ignoring unknown CLI setting 'bogus'" in caplog.text


def test_vault_rejects_foreign_and_corrupt_tokens(tmp_path: Path) -> None:
    vault = SecretVault(key_path=tmp_path / "vault.key")
    token = vault.encrypt("hunter2")

    assert token.startswith("fernet:")
    assert vault.decrypt(token) == "hunter2"
    assert vault.decrypt("") == ""
    assert vault.encrypt("") == ""
    with pytest.raises(ValueError):
        vault.decrypt("dpapi:abcd")
    with pytest.raises(ValueError):
        vault.decrypt("fernet:garbage")
    assert (tmp_path / "vault.key").exists()


def test_redact_secret() -> None:
    assert redact_secret("") == ""
    assert redact_secret("abc") == "***"
    assert redact_secret("sk-abcdef") == "sk*****ef"


def test_redacted_masks_api_key() -> None:
    data = Settings(api_key="sk-abcdef").redacted()

    assert data["api_key"] == "sk*****ef"
    assert data["model"] == "anthropic/claude-3.5-sonnet"


def test_derived_client_and_scheduler_settings() -> None:
    settings = Settings(api_key="k", finding_format="locator", debounce_ms=250, timeout_ms=4000)

    client = settings.to_client_settings()
    config = settings.to_scheduler_config()

    assert client.finding_format is FindingFormat.LOCATOR
    assert client.endpoint == "https://openrouter.ai/api/v1/chat/completions"
    assert client.default_headers == {"HTTP-Referer": "ai-diagnostics"}
    assert config.debounce_seconds == 0.25
    assert config.timeout_seconds == 4.0
