"""Settings dataclass and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..ai.client import ClientSettings
from ..ai.findings import FindingFormat
from ..ai.scheduler import SchedulerConfig

__all__ = [
    "DEFAULT_SETTINGS_PATH",
    "Settings",
    "SettingsStore",
    "SecretVault",
    "FernetSecretProvider",
    "TRANSPORT_CHOICES",
    "apply_overrides",
    "redact_secret",
    "validate_settings",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".ai_diagnostics"
DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "AI_DIAGNOSTICS_API_KEY": "api_key",
    "AI_DIAGNOSTICS_BASE_URL": "base_url",
    "AI_DIAGNOSTICS_MODEL": "model",
    "AI_DIAGNOSTICS_TRANSPORT": "transport",
    "AI_DIAGNOSTICS_CURL": "curl_executable",
    "AI_DIAGNOSTICS_FINDING_FORMAT": "finding_format",
    "AI_DIAGNOSTICS_NAMESPACE": "namespace",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "AI_DIAGNOSTICS_ENABLED": "enabled",
    "AI_DIAGNOSTICS_SHOW_PROGRESS": "show_progress",
    "AI_DIAGNOSTICS_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "AI_DIAGNOSTICS_TEMPERATURE": "temperature",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "AI_DIAGNOSTICS_DEBOUNCE_MS": "debounce_ms",
    "AI_DIAGNOSTICS_MAX_FILE_SIZE": "max_file_size",
    "AI_DIAGNOSTICS_TIMEOUT_MS": "timeout_ms",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_API_KEY_FIELD = "api_key_ciphertext"
TRANSPORT_CHOICES: tuple[str, ...] = ("curl", "httpx")


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    api_key: str = ""
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "anthropic/claude-3.5-sonnet"
    temperature: float = 0.1
    enabled: bool = True
    debounce_ms: int = 2000
    max_file_size: int = 10000
    timeout_ms: int = 30000
    show_progress: bool = True
    transport: str = "curl"
    curl_executable: str = "curl"
    finding_format: str = FindingFormat.ANCHORS.value
    namespace: str = "ai_diagnostics"
    default_headers: dict[str, str] = field(default_factory=lambda: {"HTTP-Referer": "ai-diagnostics"})
    debug_logging: bool = False

    def to_client_settings(self) -> ClientSettings:
        return ClientSettings(
            base_url=self.base_url,
            api_key=self.api_key,
            model=self.model,
            temperature=self.temperature,
            finding_format=FindingFormat(self.finding_format),
            default_headers=dict(self.default_headers),
            debug_logging=self.debug_logging,
        )

    def to_scheduler_config(self) -> SchedulerConfig:
        return SchedulerConfig.from_milliseconds(self.debounce_ms, self.timeout_ms)

    def redacted(self) -> Dict[str, Any]:
        """Return a dict suitable for display with the credential masked."""

        data = asdict(self)
        data["api_key"] = redact_secret(self.api_key)
        return data


class FernetSecretProvider:
    """Symmetric Fernet key stored on disk next to the settings file."""

    name = "fernet"

    def __init__(self, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        token = self._get_fernet().encrypt(secret.encode("utf-8"))
        return token.decode("ascii")

    def decrypt(self, token: str) -> str:
        raw = self._get_fernet().decrypt(token.encode("ascii"))
        return raw.decode("utf-8")

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SecretVault:
    """Encrypts and decrypts the API key for settings persistence."""

    def __init__(self, *, key_path: Path | None = None, provider: FernetSecretProvider | None = None) -> None:
        self._provider = provider or FernetSecretProvider(key_path)

    @property
    def strategy(self) -> str:
        return self._provider.name

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return f"{self._provider.name}:{self._provider.encrypt(secret)}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, _, payload = token.partition(":")
        if not payload:
            prefix, payload = self._provider.name, token
        if prefix != self._provider.name:
            raise ValueError(f"Unknown secret backend '{prefix}'")
        try:
            return self._provider.decrypt(payload)
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | str | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = Path(path).expanduser() if path is not None else DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI then environment overrides."""

        payload = self._read_payload()
        settings = Settings()
        needs_migration = False
        if payload:
            plaintext_key, needs_migration = self._decrypt_api_key(
                payload.pop(_API_KEY_FIELD, None), payload.pop("api_key", None)
            )
            data = _filter_fields(payload)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if plaintext_key:
                settings = replace(settings, api_key=plaintext_key)
            LOGGER.debug("Settings loaded from %s", self._path)

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - read-only home directories
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = apply_overrides(settings, overrides, source="CLI")
        settings = self._apply_env_overrides(settings)
        return validate_settings(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        if api_key:
            data[_API_KEY_FIELD] = self._vault.encrypt(api_key)
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.strategy
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            decoded = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(decoded, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return decoded

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = apply_overrides(settings, overrides, source="environment")
        return settings

    def _decrypt_api_key(self, ciphertext: str | None, legacy_plaintext: str | None) -> tuple[str, bool]:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return "", False
        if legacy_plaintext:
            LOGGER.info("Detected legacy plaintext API key; migrating to encrypted storage.")
            return legacy_plaintext, True
        return "", False


def apply_overrides(settings: Settings, overrides: Mapping[str, Any], *, source: str = "runtime") -> Settings:
    """Return ``settings`` with known, non-``None`` keys from ``overrides`` applied."""

    allowed = {item.name for item in fields(Settings)}
    filtered: Dict[str, Any] = {}
    for key, value in overrides.items():
        if key not in allowed:
            LOGGER.warning("Ignoring unknown %s setting '%s'", source, key)
            continue
        if value is None:
            continue
        filtered[key] = value
    if filtered:
        LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
        settings = replace(settings, **filtered)
    return settings


def validate_settings(settings: Settings) -> Settings:
    """Replace out-of-range or unknown values with defaults, warning once per field."""

    defaults = Settings()
    updates: Dict[str, Any] = {}

    def _reject(name: str, value: Any) -> None:
        LOGGER.warning("Invalid %s=%r; using default %r", name, value, getattr(defaults, name))
        updates[name] = getattr(defaults, name)

    for name in ("debounce_ms", "max_file_size", "timeout_ms"):
        value = getattr(settings, name)
        minimum = 0 if name == "debounce_ms" else 1
        if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
            _reject(name, value)
    if isinstance(settings.temperature, bool) or not isinstance(settings.temperature, (int, float)):
        _reject("temperature", settings.temperature)
    for name in ("enabled", "show_progress", "debug_logging"):
        if not isinstance(getattr(settings, name), bool):
            _reject(name, getattr(settings, name))
    transport = str(settings.transport).strip().lower()
    if transport not in TRANSPORT_CHOICES:
        _reject("transport", settings.transport)
    elif transport != settings.transport:
        updates["transport"] = transport
    try:
        normalized_format = FindingFormat(str(settings.finding_format).strip().lower()).value
    except ValueError:
        _reject("finding_format", settings.finding_format)
    else:
        if normalized_format != settings.finding_format:
            updates["finding_format"] = normalized_format
    for name in ("base_url", "model", "namespace", "curl_executable"):
        value = getattr(settings, name)
        if not isinstance(value, str) or not value.strip():
            _reject(name, value)
    if not isinstance(settings.default_headers, dict):
        _reject("default_headers", settings.default_headers)
    if not isinstance(settings.api_key, str):
        updates["api_key"] = ""
    if updates:
        settings = replace(settings, **updates)
    return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
