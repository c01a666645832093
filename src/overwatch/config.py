"""Configuration loading and validation.

This module is responsible for:

- Loading `.env` into the process environment (without overriding existing vars).
- Converting environment variables into strongly-typed Pydantic models.
- Validating values and providing actionable error messages.

The dispatcher only consumes these models; how an application builds them is
up to the application. `load_config()` is the environment-driven default.
"""

from __future__ import annotations

import json
import os
import re
from typing import Any, TypeVar

import dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

_T = TypeVar("_T", int, float)


def _get_env_str(name: str) -> str | None:
    """Read an optional string env var (empty means unset)."""
    value = os.getenv(name, "").strip()
    return value or None


def _get_env_bool(name: str, default: bool) -> bool:
    """Read a boolean env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    normalized = raw.strip().lower()
    if normalized in {"true", "1", "yes", "y", "on"}:
        return True
    if normalized in {"false", "0", "no", "n", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean (true/false). Got: {raw!r}")


def _get_env_number(name: str, default: _T, cast: type[_T]) -> _T:
    """Read an int/float env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a {cast.__name__}. Got: {raw!r}") from exc


def _get_env_json(name: str, default: Any, expected: type) -> Any:
    """Read a JSON-encoded env var (object or array) with a default."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{name} must be valid JSON. Got: {raw!r}") from exc
    if not isinstance(value, expected):
        raise ValueError(f"{name} must be a JSON {expected.__name__}. Got: {raw!r}")
    return value


class BackendConfig(BaseModel):
    """Base class for backend-specific configuration."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True, description="Whether this backend is enabled")


class LokiConfig(BackendConfig):
    """Configuration for the Loki log push backend."""

    host: str = Field(..., description="Loki base URL, e.g. http://localhost:3100")
    global_labels: dict[str, str] = Field(default_factory=dict, description="Labels added to every stream")
    batch_size: int = Field(default=100, gt=0, description="Entries per push")
    flush_interval_s: float = Field(default=30.0, gt=0, description="Background push interval (seconds)")
    timeout_s: float = Field(default=10.0, gt=0, description="HTTP timeout (seconds)")
    enable_compression: bool = Field(default=True, description="Gzip push bodies")
    max_pending: int = Field(default=1000, gt=0, description="Max entries held while Loki is unreachable")

    @field_validator("host")
    def validate_host(cls, v: str) -> str:
        """Require an http(s) URL and strip any trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Loki host must be an http(s) URL. Got: {v!r}")
        return v.rstrip("/")


class FaroConfig(BackendConfig):
    """Configuration for the Grafana Faro collector backend."""

    app_name: str = Field(..., description="Application name reported to Faro")
    app_version: str = Field(..., description="Application version reported to Faro")
    collector_url: str = Field(..., description="Faro collector endpoint")
    api_key: str | None = Field(default=None, description="Optional collector API key")
    environment: str | None = Field(default=None, description="Deployment environment")
    session_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    global_attributes: dict[str, str] = Field(default_factory=dict)
    timeout_s: float = Field(default=10.0, gt=0, description="HTTP timeout (seconds)")


class PrivacyConfig(BaseModel):
    """Scrubbing switch, custom PII patterns and per-kind feature gates."""

    model_config = ConfigDict(frozen=True)

    scrub_pii: bool = True
    enable_analytics: bool = True
    enable_error_reporting: bool = True
    enable_performance_monitoring: bool = True
    enable_logging: bool = True
    pii_patterns: list[str] = Field(default_factory=list, description="Extra regexes, applied after the defaults")

    @field_validator("pii_patterns")
    def validate_pii_patterns(cls, v: list[str]) -> list[str]:
        """Reject patterns that do not compile."""
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid PII pattern {pattern!r}: {exc}") from exc
        return v


class ObservabilityConfig(BaseModel):
    """Top-level configuration consumed by the dispatcher."""

    model_config = ConfigDict(frozen=True)

    backend_configs: list[BackendConfig] = Field(default_factory=list)
    privacy: PrivacyConfig = Field(default_factory=PrivacyConfig)
    enable_offline_buffer: bool = True
    max_buffer_size: int = Field(default=1000, gt=0)
    flush_interval_s: float = Field(default=60.0, gt=0, description="Offline buffer flush interval (seconds)")
    enable_debug_logging: bool = False
    global_user_id: str | None = None
    global_session_id: str | None = None
    global_context: dict[str, Any] = Field(default_factory=dict)
    buffer_path: str = Field(default="overwatch_buffer.duckdb", description="DuckDB file for the offline buffer")


def load_config() -> ObservabilityConfig:
    """Load configuration from environment variables.

    Notes:
    - Calls `dotenv.load_dotenv()` so local `.env` values are visible to the process.
    - Backend configs are only produced when their endpoint variable is set.
    - Raises `ValueError` with actionable messages for malformed values.
    """
    dotenv.load_dotenv()

    privacy = PrivacyConfig(
        scrub_pii=_get_env_bool("OVERWATCH_SCRUB_PII", True),
        enable_analytics=_get_env_bool("OVERWATCH_ENABLE_ANALYTICS", True),
        enable_error_reporting=_get_env_bool("OVERWATCH_ENABLE_ERROR_REPORTING", True),
        enable_performance_monitoring=_get_env_bool("OVERWATCH_ENABLE_PERFORMANCE_MONITORING", True),
        enable_logging=_get_env_bool("OVERWATCH_ENABLE_LOGGING", True),
        pii_patterns=_get_env_json("OVERWATCH_PII_PATTERNS", [], list),
    )

    backend_configs: list[BackendConfig] = []
    loki_host = _get_env_str("LOKI_HOST")
    if loki_host is not None:
        backend_configs.append(
            LokiConfig(
                host=loki_host,
                global_labels=_get_env_json("LOKI_LABELS", {}, dict),
                batch_size=_get_env_number("LOKI_BATCH_SIZE", 100, int),
            )
        )
    faro_url = _get_env_str("FARO_COLLECTOR_URL")
    if faro_url is not None:
        backend_configs.append(
            FaroConfig(
                collector_url=faro_url,
                app_name=_get_env_str("FARO_APP_NAME") or "app",
                app_version=_get_env_str("FARO_APP_VERSION") or "0.0.0",
                api_key=_get_env_str("FARO_API_KEY"),
                environment=_get_env_str("FARO_ENVIRONMENT"),
            )
        )

    return ObservabilityConfig(
        backend_configs=backend_configs,
        privacy=privacy,
        enable_offline_buffer=_get_env_bool("OVERWATCH_ENABLE_OFFLINE_BUFFER", True),
        max_buffer_size=_get_env_number("OVERWATCH_MAX_BUFFER_SIZE", 1000, int),
        flush_interval_s=_get_env_number("OVERWATCH_FLUSH_INTERVAL", 60.0, float),
        enable_debug_logging=_get_env_bool("OVERWATCH_DEBUG_LOGGING", False),
        global_user_id=_get_env_str("OVERWATCH_USER_ID"),
        global_session_id=_get_env_str("OVERWATCH_SESSION_ID"),
        global_context=_get_env_json("OVERWATCH_GLOBAL_CONTEXT", {}, dict),
        buffer_path=_get_env_str("OVERWATCH_BUFFER_PATH") or "overwatch_buffer.duckdb",
    )
