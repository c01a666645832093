"""Loki backend adapter (log push API).

Log entries and error reports (converted to error-level log lines) are batched
and pushed to `{host}/loki/api/v1/push` as label-grouped streams. Events and
metrics are not supported.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from typing import Any

from ..config import BackendConfig, LokiConfig
from ..errors import ConfigMismatchError, DeliveryError
from ..models import ErrorReport, LogEntry, Metric, RecordKind, TelemetryEvent
from .base import register_adapter_factory
from .http import post_json_with_retries

logger = logging.getLogger("overwatch.adapters.loki")

PUSH_PATH = "/loki/api/v1/push"

# One pending push entry: (labels, timestamp_ns, line)
_Entry = tuple[dict[str, str], str, str]


def _timestamp_ns(entry: LogEntry) -> str:
    return str(int(entry.timestamp.timestamp() * 1_000_000) * 1000)


def build_push_body(entries: list[_Entry]) -> dict[str, Any]:
    """Group entries by label set into Loki's streams payload."""
    streams: dict[tuple[tuple[str, str], ...], list[list[str]]] = {}
    for labels, ts, line in entries:
        key = tuple(sorted(labels.items()))
        streams.setdefault(key, []).append([ts, line])
    return {"streams": [{"stream": dict(key), "values": values} for key, values in streams.items()]}


def error_to_log_entry(error: ErrorReport) -> LogEntry:
    """Represent an error report as an error-level log entry."""
    labels = {"severity": error.severity}
    if error.error_type is not None:
        labels["error_type"] = error.error_type
    context: dict[str, Any] = {
        **error.context,
        "exception": error.exception,
        "breadcrumbs": [b.model_dump(mode="json") for b in error.breadcrumbs],
    }
    if error.stack_trace is not None:
        context["stack_trace"] = error.stack_trace
    return LogEntry(
        level="error",
        message=f"Error: {error.message or error.exception}",
        timestamp=error.timestamp,
        labels=labels,
        context=context,
        user_id=error.user_id,
        session_id=error.session_id,
        device_info=error.device_info,
    )


class LokiAdapter:
    """Batching push client for Grafana Loki."""

    name = "loki"

    def __init__(self) -> None:
        self._config: LokiConfig | None = None
        self._enabled = False
        self._pending: list[_Entry] = []
        self._push_lock = asyncio.Lock()
        self._flush_task: asyncio.Task[None] | None = None

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def config(self) -> LokiConfig:
        if self._config is None:
            raise RuntimeError("LokiAdapter not initialized. Call initialize() first.")
        return self._config

    async def initialize(self, config: BackendConfig) -> None:
        if not isinstance(config, LokiConfig):
            raise ConfigMismatchError(f"LokiAdapter requires LokiConfig, got {type(config).__name__}")
        self._config = config
        self._enabled = config.enabled
        if not self._enabled:
            return
        self._flush_task = asyncio.create_task(self._run_flush_loop(), name="loki-flush")
        logger.debug("Loki adapter initialized for %s", config.host)

    def supports(self, kind: RecordKind) -> bool:
        return kind in ("log", "error")

    async def track_event(self, event: TelemetryEvent) -> None:
        raise DeliveryError(f"Loki does not accept {event.kind} records")

    async def record_metric(self, metric: Metric) -> None:
        raise DeliveryError(f"Loki does not accept {metric.kind} records")

    async def capture_error(self, error: ErrorReport) -> None:
        await self.log(error_to_log_entry(error))

    async def log(self, entry: LogEntry) -> None:
        """Queue an entry; push inline once a full batch is pending.

        If the inline push fails, this entry's failure is raised so the caller
        can buffer it, and the rest of the batch stays pending.
        """
        if not self._enabled or self._config is None:
            return

        queued = self._to_push_entry(entry)
        self._pending.append(queued)
        if len(self._pending) < self._config.batch_size:
            return

        async with self._push_lock:
            batch, self._pending = self._pending, []
            try:
                await self._push(batch)
            except Exception:
                self._requeue([e for e in batch if e is not queued])
                raise

    async def flush(self) -> None:
        """Push everything pending; on failure the entries stay pending."""
        if self._config is None:
            return
        async with self._push_lock:
            if not self._pending:
                return
            batch, self._pending = self._pending, []
            try:
                await self._push(batch)
            except Exception:
                self._requeue(batch)
                raise

    async def set_user_id(self, user_id: str | None) -> None:
        # Identity travels per entry as labels.
        return None

    async def set_user_properties(self, properties: dict[str, Any]) -> None:
        return None

    async def dispose(self) -> None:
        if self._flush_task is not None:
            self._flush_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._flush_task
            self._flush_task = None
        try:
            await self.flush()
        finally:
            self._enabled = False

    def _to_push_entry(self, entry: LogEntry) -> _Entry:
        labels = {**self.config.global_labels, **entry.labels, "level": entry.level}
        if entry.user_id is not None:
            labels["user_id"] = entry.user_id
        if entry.session_id is not None:
            labels["session_id"] = entry.session_id
        line = json.dumps(
            {
                "message": entry.message,
                "level": entry.level,
                "timestamp": entry.timestamp.isoformat(),
                "context": entry.context,
                "device_info": entry.device_info,
            },
            separators=(",", ":"),
            default=str,
        )
        return labels, _timestamp_ns(entry), line

    def _requeue(self, batch: list[_Entry]) -> None:
        """Put failed entries back in front of newer ones, dropping the oldest past the cap."""
        merged = batch + self._pending
        overflow = len(merged) - self.config.max_pending
        if overflow > 0:
            logger.warning("Loki pending queue full; dropping %d oldest entries", overflow)
            merged = merged[overflow:]
        self._pending = merged

    async def _push(self, batch: list[_Entry]) -> None:
        await post_json_with_retries(
            self.config.host + PUSH_PATH,
            build_push_body(batch),
            timeout_s=self.config.timeout_s,
            compress=self.config.enable_compression,
        )

    async def _run_flush_loop(self) -> None:
        """Periodically push pending entries."""
        while True:
            await asyncio.sleep(self.config.flush_interval_s)
            try:
                await self.flush()
            except Exception:  # noqa: BLE001 - keep going; entries stay pending
                logger.warning("Loki push failed; %d entries pending", len(self._pending), exc_info=True)


register_adapter_factory(LokiConfig, LokiAdapter)
