"""Grafana Faro collector adapter.

Every record kind is supported. Each delivery is one POST to the collector
with a single-item Faro payload plus the app/session/user `meta` block.
"""

from __future__ import annotations

import logging
import zlib
from typing import Any

from ..config import BackendConfig, FaroConfig
from ..errors import ConfigMismatchError
from ..models import ErrorReport, LogEntry, Metric, RecordKind, TelemetryEvent
from .base import register_adapter_factory
from .http import post_json_with_retries

logger = logging.getLogger("overwatch.adapters.faro")

_FARO_LOG_LEVELS: dict[str, str] = {
    "trace": "trace",
    "debug": "debug",
    "info": "info",
    "warn": "warn",
    "error": "error",
    "fatal": "error",
}


def _stringify(values: dict[str, Any]) -> dict[str, str]:
    """Faro context/attribute maps are string-valued."""
    return {str(k): v if isinstance(v, str) else str(v) for k, v in values.items()}


class FaroAdapter:
    """Posts telemetry to a Faro collector endpoint."""

    name = "faro"

    def __init__(self) -> None:
        self._config: FaroConfig | None = None
        self._enabled = False
        self._user_id: str | None = None
        self._user_properties: dict[str, Any] = {}

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def config(self) -> FaroConfig:
        if self._config is None:
            raise RuntimeError("FaroAdapter not initialized. Call initialize() first.")
        return self._config

    async def initialize(self, config: BackendConfig) -> None:
        if not isinstance(config, FaroConfig):
            raise ConfigMismatchError(f"FaroAdapter requires FaroConfig, got {type(config).__name__}")
        self._config = config
        self._enabled = config.enabled
        logger.debug("Faro adapter initialized for %s v%s", config.app_name, config.app_version)

    def supports(self, kind: RecordKind) -> bool:
        return True

    def is_sampled(self, session_id: str | None) -> bool:
        """Deterministic per-session sampling; records without a session are always kept."""
        rate = self.config.session_sample_rate
        if session_id is None or rate >= 1.0:
            return True
        return zlib.crc32(session_id.encode("utf-8")) / 2**32 < rate

    async def track_event(self, event: TelemetryEvent) -> None:
        item = {
            "name": event.name,
            "domain": "overwatch",
            "attributes": _stringify({**event.context, **event.properties}),
            "timestamp": event.timestamp.isoformat(),
        }
        await self._send("events", item, session_id=event.session_id, user_id=event.user_id)

    async def capture_error(self, error: ErrorReport) -> None:
        context = {**error.context, "severity": error.severity}
        if error.message is not None:
            context["message"] = error.message
        if error.stack_trace is not None:
            context["stack_trace"] = error.stack_trace
        if error.breadcrumbs:
            context["breadcrumbs"] = [b.model_dump(mode="json") for b in error.breadcrumbs]
        item = {
            "type": error.error_type or "Error",
            "value": error.exception,
            "timestamp": error.timestamp.isoformat(),
            "context": _stringify(context),
        }
        await self._send("exceptions", item, session_id=error.session_id, user_id=error.user_id)

    async def log(self, entry: LogEntry) -> None:
        item = {
            "message": entry.message,
            "level": _FARO_LOG_LEVELS[entry.level],
            "context": _stringify({**entry.context, **entry.labels}),
            "timestamp": entry.timestamp.isoformat(),
        }
        await self._send("logs", item, session_id=entry.session_id, user_id=entry.user_id)

    async def record_metric(self, metric: Metric) -> None:
        context: dict[str, Any] = dict(metric.tags)
        if metric.unit is not None:
            context["unit"] = metric.unit
        item: dict[str, Any] = {
            "type": metric.name,
            "values": {metric.name: metric.value},
            "timestamp": metric.timestamp.isoformat(),
            "context": _stringify(context),
        }
        if metric.trace_id is not None:
            item["trace"] = {"trace_id": metric.trace_id, "span_id": metric.span_id}
        await self._send("measurements", item, session_id=metric.session_id, user_id=metric.user_id)

    async def set_user_id(self, user_id: str | None) -> None:
        self._user_id = user_id

    async def set_user_properties(self, properties: dict[str, Any]) -> None:
        self._user_properties = dict(properties)

    async def dispose(self) -> None:
        self._enabled = False

    def _meta(self, *, session_id: str | None, user_id: str | None) -> dict[str, Any]:
        app: dict[str, Any] = {"name": self.config.app_name, "version": self.config.app_version}
        if self.config.environment is not None:
            app["environment"] = self.config.environment
        meta: dict[str, Any] = {"app": app}
        if self.config.global_attributes:
            meta["page"] = {"attributes": dict(self.config.global_attributes)}
        if session_id is not None:
            meta["session"] = {"id": session_id}
        uid = user_id or self._user_id
        if uid is not None or self._user_properties:
            user: dict[str, Any] = {}
            if uid is not None:
                user["id"] = uid
            if self._user_properties:
                user["attributes"] = _stringify(self._user_properties)
            meta["user"] = user
        return meta

    async def _send(self, section: str, item: dict[str, Any], *, session_id: str | None, user_id: str | None) -> None:
        if not self._enabled or self._config is None:
            return
        if not self.is_sampled(session_id):
            return
        body = {"meta": self._meta(session_id=session_id, user_id=user_id), section: [item]}
        headers = {"x-api-key": self._config.api_key} if self._config.api_key else None
        await post_json_with_retries(self._config.collector_url, body, headers=headers, timeout_s=self._config.timeout_s)


register_adapter_factory(FaroConfig, FaroAdapter)
