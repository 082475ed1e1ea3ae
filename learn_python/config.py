"""Runtime configuration and application identity."""
from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from functools import lru_cache
from importlib.metadata import version
from typing import Any, Dict, Mapping

from .envelope import utc_timestamp

DEFAULT_APP_NAME = "learn-python"


class ConfigError(ValueError):
    """Raised when environment configuration cannot be parsed."""


def package_version() -> str:
    try:
        return version("learn-python")
    except Exception:  # pragma: no cover - fallback when package metadata missing
        return "0.0.1"


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 4567
    log_level: str = "info"
    environment: str = "development"
    app_name: str = DEFAULT_APP_NAME
    app_version: str = "0.0.1"
    cors_origin: str = "*"
    metrics_enabled: bool = True
    otel_endpoint: str = ""

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@dataclass(frozen=True)
class AppIdentity:
    """Process-wide identity, stamped once when the application is built."""

    name: str
    version: str
    environment: str
    boot_timestamp: str = field(default_factory=utc_timestamp)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppIdentity":
        return cls(name=settings.app_name, version=settings.app_version, environment=settings.environment)

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = payload.pop("boot_timestamp")
        return payload


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _parse_port(raw: str) -> int:
    try:
        port = int(raw)
    except ValueError as error:
        raise ConfigError(f"PORT must be an integer, got {raw!r}") from error
    if not 1 <= port <= 65535:
        raise ConfigError(f"PORT must be between 1 and 65535, got {port}")
    return port


def settings_from_env(environ: Mapping[str, str]) -> Settings:
    """Build settings from an environment mapping.

    ``APP_ENV`` wins over ``RACK_ENV``; both default to ``development``.
    Unknown environment names are kept as-is and behave like development.
    """
    environment = (environ.get("APP_ENV") or environ.get("RACK_ENV") or "development").strip().lower()
    default_log_level = "error" if environment == "test" else "info"
    return Settings(
        host=environ.get("HOST") or "0.0.0.0",
        port=_parse_port(environ.get("PORT") or "4567"),
        log_level=(environ.get("LOG_LEVEL") or default_log_level).lower(),
        environment=environment,
        app_name=environ.get("APP_NAME") or DEFAULT_APP_NAME,
        app_version=environ.get("APP_VERSION") or package_version(),
        cors_origin=environ.get("CORS_ORIGIN") or "*",
        metrics_enabled=_parse_bool("METRICS_ENABLED", environ.get("METRICS_ENABLED") or "true"),
        otel_endpoint=(environ.get("OTEL_EXPORTER_OTLP_ENDPOINT") or "").strip(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    return settings_from_env(os.environ)
