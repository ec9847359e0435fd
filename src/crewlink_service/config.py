"""
Configuration management for the CrewLink service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict

REDACTION_MARKER = "***REDACTED***"

_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {"session_secret", "secret_key", "webhook_secret", "api_key"}
)


class ConfigurationError(Exception):
    """Raised when the configuration file cannot be read or parsed."""


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class AuthConfig(BaseModel):
    """Session token verification configuration."""

    model_config = ConfigDict(extra="forbid")
    session_secret: str
    algorithm: Literal["HS256", "HS384", "HS512"]


class PaymentsConfig(BaseModel):
    """Payment processor configuration."""

    model_config = ConfigDict(extra="forbid")
    provider: Literal["stripe"]
    secret_key: str
    webhook_secret: str | None
    currency: str


class EmailConfig(BaseModel):
    """Transactional email configuration."""

    model_config = ConfigDict(extra="forbid")
    enabled: bool
    api_key: str | None
    from_address: str
    app_base_url: str


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class LimitsConfig(BaseModel):
    """Field length and pagination limits."""

    model_config = ConfigDict(extra="forbid")
    max_title_length: int
    max_description_length: int
    max_bid_message_length: int
    max_reason_length: int
    max_message_length: int
    max_review_length: int
    default_page_size: int
    max_page_size: int


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    auth: AuthConfig
    payments: PaymentsConfig
    email: EmailConfig
    request: RequestConfig
    limits: LimitsConfig


def get_config_path() -> Path:
    """Determine configuration file path (CONFIG_PATH or ./config.yaml)."""
    env_path = os.environ.get("CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return Path.cwd() / "config.yaml"


def load_settings(config_path: Path) -> Settings:
    """Load and validate settings from a YAML file."""
    try:
        raw = yaml.safe_load(config_path.read_text())
    except OSError as exc:
        msg = f"Cannot read config file: {config_path}"
        raise ConfigurationError(msg) from exc
    except yaml.YAMLError as exc:
        msg = f"Invalid YAML in config file: {config_path}"
        raise ConfigurationError(msg) from exc

    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ConfigurationError(msg)

    return Settings(**raw)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings loaded from the resolved config path."""
    return load_settings(get_config_path())


def clear_settings_cache() -> None:
    """Drop cached settings so the next call reloads from disk."""
    get_settings.cache_clear()


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: (REDACTION_MARKER if key in _SENSITIVE_KEYS and item else _redact(item))
            for key, item in value.items()
        }
    return value


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    return _redact(get_settings().model_dump())
