"""Backend adapter interface and registration bookkeeping.

The dispatcher depends only on this small interface so backends can be added
or swapped without touching the delivery pipeline.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from ..config import BackendConfig
from ..models import ErrorReport, LogEntry, Metric, RecordKind, TelemetryEvent, TelemetryRecord


class BackendAdapter(Protocol):
    name: str

    @property
    def is_enabled(self) -> bool:
        """Whether the adapter currently accepts deliveries."""

    async def initialize(self, config: BackendConfig) -> None:
        """Configure the adapter; raise `ConfigMismatchError` for a foreign config type."""

    def supports(self, kind: RecordKind) -> bool:
        """Return whether records of `kind` should be delivered to this adapter."""

    async def track_event(self, event: TelemetryEvent) -> None:
        """Deliver an analytics event."""

    async def capture_error(self, error: ErrorReport) -> None:
        """Deliver an error report."""

    async def log(self, entry: LogEntry) -> None:
        """Deliver a log entry."""

    async def record_metric(self, metric: Metric) -> None:
        """Deliver a metric sample."""

    async def set_user_id(self, user_id: str | None) -> None:
        """Associate subsequent telemetry with a user (None clears it)."""

    async def set_user_properties(self, properties: dict[str, Any]) -> None:
        """Attach (already scrubbed) user properties."""

    async def dispose(self) -> None:
        """Release resources; pending data may be flushed."""


async def deliver(adapter: BackendAdapter, record: TelemetryRecord) -> None:
    """Route a record to the adapter method for its kind."""
    match record:
        case TelemetryEvent():
            await adapter.track_event(record)
        case ErrorReport():
            await adapter.capture_error(record)
        case LogEntry():
            await adapter.log(record)
        case Metric():
            await adapter.record_metric(record)
        case _:
            raise TypeError(f"Unsupported record type: {type(record)!r}")


@dataclass(frozen=True)
class AdapterRegistration:
    """An initialized adapter in the dispatcher's active set."""

    adapter: BackendAdapter
    config: BackendConfig

    @property
    def name(self) -> str:
        return getattr(self.adapter, "name", type(self.adapter).__name__)

    @property
    def enabled(self) -> bool:
        return self.config.enabled and self.adapter.is_enabled

    def accepts(self, kind: RecordKind) -> bool:
        """Capability check, re-evaluated on every delivery attempt."""
        return self.enabled and self.adapter.supports(kind)


AdapterFactory = Callable[[], BackendAdapter]

ADAPTER_FACTORIES: dict[type[BackendConfig], AdapterFactory] = {}


def register_adapter_factory(config_type: type[BackendConfig], factory: AdapterFactory) -> None:
    """Let `backend_configs` entries of `config_type` be built during dispatcher initialize."""
    ADAPTER_FACTORIES[config_type] = factory


def create_adapter(config: BackendConfig) -> BackendAdapter:
    """Instantiate the adapter registered for the config's exact type."""
    factory = ADAPTER_FACTORIES.get(type(config))
    if factory is None:
        raise LookupError(f"No adapter factory registered for {type(config).__name__}")
    return factory()
