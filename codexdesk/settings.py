"""Typed application settings with Pydantic validation."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Literal

import tomllib
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


DEFAULT_MODEL = "llama3.2"
DEFAULT_PROVIDER = "oss"
DEFAULT_FLUSH_INTERVAL_MS = 16
MAX_FLUSH_INTERVAL_MS = 1000
DEFAULT_SHUTDOWN_GRACE_SECONDS = 0.1

# Fallback mapping used when the provider table does not declare ``env_key``.
PROVIDER_ENV_KEYS: dict[str, str] = {
    "gemini": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "ollama": "OLLAMA_API_KEY",
}
DEFAULT_PROVIDER_ENV_KEY = "OPENAI_API_KEY"


ApprovalPolicy = Literal["untrusted", "on-failure", "on-request", "never"]
SandboxMode = Literal["read-only", "workspace-write", "danger-full-access"]


class ProviderSettings(BaseModel):
    """Model provider entry as declared in the backend's provider table."""

    model_config = ConfigDict(validate_assignment=True)

    name: str
    base_url: str = ""
    env_key: str = ""


class BackendSettings(BaseModel):
    """Settings describing how to launch the agent backend."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    codex_path: str | None = None
    working_directory: str = ""
    model: str = DEFAULT_MODEL
    provider: str = DEFAULT_PROVIDER
    use_oss: bool = True
    api_key: str | None = None
    approval_policy: ApprovalPolicy = "on-request"
    sandbox_mode: SandboxMode = "workspace-write"
    custom_args: list[str] = Field(default_factory=list)
    providers: dict[str, ProviderSettings] = Field(default_factory=dict)
    shutdown_grace_seconds: float = Field(DEFAULT_SHUTDOWN_GRACE_SECONDS, ge=0.0)

    @field_validator("codex_path", "api_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value: str | Path | None) -> str | None:
        """Convert empty strings to ``None``."""
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("working_directory", "model", "provider", mode="before")
    @classmethod
    def _strip(cls, value: str | Path | None) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("sandbox_mode", mode="before")
    @classmethod
    def _normalise_sandbox_mode(cls, value: str | None) -> str:
        """Unknown sandbox modes fall back to ``workspace-write``."""
        if value in ("read-only", "workspace-write", "danger-full-access"):
            return value
        return "workspace-write"

    def resolve_provider(self) -> ProviderSettings | None:
        """Return the provider table entry, trying an exact then a lowercase match."""
        if not self.provider:
            return None
        return self.providers.get(self.provider) or self.providers.get(
            self.provider.lower()
        )

    def api_key_env_var(self) -> str:
        """Return the environment variable the backend reads the API key from."""
        provider = self.resolve_provider()
        if provider is not None and provider.env_key:
            return provider.env_key
        return PROVIDER_ENV_KEYS.get(self.provider.lower(), DEFAULT_PROVIDER_ENV_KEY)


class StreamSettings(BaseModel):
    """Settings controlling the streaming transcript engine."""

    model_config = ConfigDict(validate_assignment=True)

    flush_interval_ms: int = DEFAULT_FLUSH_INTERVAL_MS

    @field_validator("flush_interval_ms", mode="before")
    @classmethod
    def _normalise_flush_interval(cls, value: int | str | None) -> int:
        """Coerce *value* into the supported refresh window."""
        if value is None:
            return DEFAULT_FLUSH_INTERVAL_MS
        if isinstance(value, str):
            raw = value.strip()
            if not raw:
                return DEFAULT_FLUSH_INTERVAL_MS
            try:
                parsed = int(raw)
            except ValueError:  # pragma: no cover - delegated to Pydantic
                return value
        else:
            if isinstance(value, bool):
                raise TypeError("Boolean is not a valid flush_interval_ms")
            parsed = int(value)
        if parsed < 0:
            return DEFAULT_FLUSH_INTERVAL_MS
        if parsed > MAX_FLUSH_INTERVAL_MS:
            return MAX_FLUSH_INTERVAL_MS
        return parsed


class UISettings(BaseModel):
    """Settings related to the graphical user interface."""

    model_config = ConfigDict(validate_assignment=True)

    log_level: int = Field(default=logging.INFO)
    show_reasoning: bool = False
    window_width: int = 1000
    window_height: int = 700


class AppSettings(BaseModel):
    """Aggregate settings for the application."""

    model_config = ConfigDict(validate_assignment=True)

    backend: BackendSettings = Field(default_factory=BackendSettings)
    stream: StreamSettings = Field(default_factory=StreamSettings)
    ui: UISettings = Field(default_factory=UISettings)

    def to_dict(self) -> dict:
        """Return settings as a plain dictionary."""
        return self.model_dump()


def load_app_settings(path: str | Path) -> AppSettings:
    """Load :class:`AppSettings` from *path* with validation.

    Format is detected by file extension: ``.toml`` uses :mod:`tomllib`,
    everything else is treated as JSON.  Any validation errors are wrapped into
    :class:`ValueError` with a human-friendly message.
    """
    p = Path(path)
    with p.open("rb") as fh:
        data = tomllib.load(fh) if p.suffix.lower() == ".toml" else json.load(fh)
    try:
        return AppSettings.model_validate(data)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


__all__ = [
    "AppSettings",
    "BackendSettings",
    "ProviderSettings",
    "StreamSettings",
    "UISettings",
    "load_app_settings",
]
