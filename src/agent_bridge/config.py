"""Configuration loading and validation for the chat agent bridge."""

from __future__ import annotations

from collections.abc import Mapping
from copy import deepcopy
import logging
import os
from pathlib import Path
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .exceptions import ConfigValidationError

import tomllib  # stdlib since Python 3.11 (project requires >=3.11)

LOGGER = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "agent-bridge"
CONFIG_PATH = CONFIG_DIR / "config.toml"

VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}

# Environment variable -> (section, key).
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "GEMINI_API_KEY": ("model", "api_key"),
    "AGENT_BRIDGE_MODEL_PROVIDER": ("model", "provider"),
    "TAVILY_API_KEY": ("search", "api_key"),
    "STREAM_API_KEY": ("stream", "api_key"),
    "STREAM_API_SECRET": ("stream", "api_secret"),
    "AGENT_BRIDGE_CHANNEL_ID": ("stream", "channel_id"),
}


def _strip_string(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string.")
    return value.strip()


class ModelConfig(BaseModel):
    """Completion provider settings."""

    provider: Literal["openai", "ollama"] = "openai"
    model: str = "gemini-2.0-flash"
    api_key: str = ""
    base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    host: str = "http://localhost:11434"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    timeout: float = Field(default=120.0, gt=0)

    @field_validator("provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: Any) -> str:
        return _strip_string(value, "provider").lower()

    @field_validator("api_key", mode="before")
    @classmethod
    def _normalize_api_key(cls, value: Any) -> str:
        return _strip_string(value, "api_key")

    @field_validator("model", mode="before")
    @classmethod
    def _validate_model(cls, value: Any) -> str:
        normalized = _strip_string(value, "model")
        if not normalized:
            raise ValueError("model must not be empty.")
        return normalized

    @field_validator("base_url", "host", mode="before")
    @classmethod
    def _validate_url(cls, value: Any) -> str:
        normalized = _strip_string(value, "url")
        parsed = urlparse(normalized)
        if parsed.scheme not in {"http", "https"} or not parsed.hostname:
            raise ValueError(f"{normalized!r} must be an http(s) URL with a host.")
        return normalized


class SearchConfig(BaseModel):
    """Tavily web search settings. An empty key disables search."""

    api_key: str = ""
    endpoint: str = "https://api.tavily.com/search"
    search_depth: Literal["basic", "advanced"] = "advanced"
    max_results: int = Field(default=5, ge=1, le=20)
    include_answer: bool = True
    include_raw_content: bool = False
    timeout: float = Field(default=25.0, gt=0)

    @field_validator("api_key", mode="before")
    @classmethod
    def _normalize_api_key(cls, value: Any) -> str:
        return _strip_string(value, "api_key")


class AgentConfig(BaseModel):
    """Conversation window and streaming behaviour."""

    history_window: int = Field(default=20, ge=1, le=500)
    flush_interval_seconds: float = Field(default=1.0, ge=0.0, le=60.0)


class StreamConfig(BaseModel):
    """Stream Chat credentials and the channel the bot serves."""

    api_key: str = ""
    api_secret: str = ""
    channel_type: str = "messaging"
    channel_id: str = ""
    user_id: str = "ai-writing-assistant"
    verify_webhooks: bool = True

    @field_validator("api_key", "api_secret", "channel_id", mode="before")
    @classmethod
    def _normalize_strings(cls, value: Any) -> str:
        return _strip_string(value, "value")

    @field_validator("channel_type", "user_id", mode="before")
    @classmethod
    def _validate_required(cls, value: Any) -> str:
        normalized = _strip_string(value, "value")
        if not normalized:
            raise ValueError("Value must not be empty.")
        return normalized


class ServerConfig(BaseModel):
    """Webhook server bind address."""

    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)


class LoggingConfig(BaseModel):
    """Logging behavior and output destinations."""

    level: str = "INFO"
    structured: bool = True
    log_to_file: bool = False
    log_file_path: str = "~/.local/state/agent-bridge/app.log"

    @field_validator("level", mode="before")
    @classmethod
    def _validate_level(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Logging level must be a string.")
        normalized = value.strip().upper()
        if normalized not in VALID_LOG_LEVELS:
            raise ValueError(f"Unsupported log level {normalized!r}.")
        return normalized

    @field_validator("log_file_path", mode="before")
    @classmethod
    def _validate_log_file_path(cls, value: Any) -> str:
        normalized = _strip_string(value, "log_file_path")
        if not normalized:
            raise ValueError("log_file_path must not be empty.")
        return normalized


class Config(BaseModel):
    """Root configuration model for all sections."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())
    model: ModelConfig = ModelConfig()
    search: SearchConfig = SearchConfig()
    agent: AgentConfig = AgentConfig()
    stream: StreamConfig = StreamConfig()
    server: ServerConfig = ServerConfig()
    logging: LoggingConfig = LoggingConfig()

    @model_validator(mode="after")
    def _validate_stream_pairing(self) -> Config:
        if bool(self.stream.api_key) != bool(self.stream.api_secret):
            raise ValueError("stream.api_key and stream.api_secret must be set together.")
        return self


DEFAULT_CONFIG: dict[str, dict[str, Any]] = Config().model_dump()


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override values onto base values."""
    merged: dict[str, Any] = deepcopy(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, Any]]:
    """Collect non-empty environment overrides as a nested config fragment."""
    overrides: dict[str, dict[str, Any]] = {}
    for variable, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(variable, "").strip()
        if value:
            overrides.setdefault(section, {})[key] = value
    return overrides


def _safe_default_config() -> dict[str, dict[str, Any]]:
    """Return a deep copy of validated default config data."""
    return deepcopy(DEFAULT_CONFIG)


def _validate_config(raw: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Validate merged config and fallback to safe defaults when possible."""
    try:
        config = Config.model_validate(raw)
        return config.model_dump()
    except ValidationError as exc:
        LOGGER.warning("Configuration validation failed, using safe defaults: %s", exc)
        return _safe_default_config()
    except Exception as exc:  # noqa: BLE001 - unexpected model construction failure.
        raise ConfigValidationError(f"Unable to validate configuration: {exc}") from exc


def load_config(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, dict[str, Any]]:
    """
    Load configuration from TOML, merge with defaults and environment, and validate.

    Credentials from the environment win over the file. Validation failures
    fall back to defaults, but environment overrides are applied again on top
    so a typo in the file does not also drop the API keys.
    """
    target_path = config_path or CONFIG_PATH
    env = os.environ if environ is None else environ

    raw_data: dict[str, Any] = {}
    if target_path.exists():
        try:
            raw_data = tomllib.loads(target_path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            LOGGER.warning("Failed to parse config at %s: %s", target_path, exc)
            raw_data = {}

    overrides = _env_overrides(env)
    merged = _deep_merge(_deep_merge(DEFAULT_CONFIG, raw_data), overrides)
    validated = _validate_config(merged)
    if validated == DEFAULT_CONFIG and overrides:
        validated = _validate_config(_deep_merge(DEFAULT_CONFIG, overrides))
    return validated
