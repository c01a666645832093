"""Telemetry dispatcher.

Responsibilities:
- gate records by the per-kind feature flags
- enrich records with the current user/session/global context and device info
- scrub PII
- deliver concurrently to every enabled adapter that supports the record kind
- buffer the record once if any adapter failed, and replay buffered records
  through the same delivery path

A dispatcher is an explicitly constructed object; its context lives on the
instance. Lifecycle: uninitialized -> initialized -> disposed (terminal).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from .adapters import AdapterRegistration, BackendAdapter, create_adapter, deliver
from .buffer import BufferedItem, BufferStorage, DuckDBBufferStorage, OfflineBuffer
from .config import BackendConfig, ObservabilityConfig, PrivacyConfig
from .context import TelemetryContext, new_session_id
from .device import DeviceInfoProvider, PlatformDeviceInfo
from .errors import (
    AlreadyInitializedError,
    DispatcherDisposedError,
    NotInitializedError,
    StorageUnavailableError,
)
from .models import (
    Breadcrumb,
    ErrorReport,
    ErrorSeverity,
    LogEntry,
    LogLevel,
    Metric,
    RecordKind,
    TelemetryEvent,
    TelemetryRecord,
)
from .privacy import PrivacyScrubber

logger = logging.getLogger("overwatch.dispatcher")

DispatcherState = Literal["uninitialized", "initialized", "disposed"]
AttemptOutcome = Literal["delivered", "failed", "skipped"]


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of one `submit` call."""

    kind: RecordKind
    record: TelemetryRecord | None = None
    delivered: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    buffered: bool = False
    dropped: bool = False


class TelemetryDispatcher:
    """Fans telemetry records out to backend adapters with an offline fallback."""

    def __init__(
        self,
        *,
        storage: BufferStorage | None = None,
        device_info: DeviceInfoProvider | None = None,
    ) -> None:
        """Create an uninitialized dispatcher.

        Args:
            storage: Offline buffer storage. Defaults to DuckDB at `config.buffer_path`.
            device_info: Source of host metadata merged into every record.
                Defaults to `PlatformDeviceInfo()`.
        """
        self._storage = storage
        self._device_info: DeviceInfoProvider = device_info if device_info is not None else PlatformDeviceInfo()

        self._state: DispatcherState = "uninitialized"
        self._config: ObservabilityConfig | None = None
        # Rebuilt from the real config in initialize(); state checks guard use before then.
        self._scrubber = PrivacyScrubber(PrivacyConfig())
        self._buffer: OfflineBuffer | None = None
        self._context = TelemetryContext()

        # Replaced wholesale under the lock; readers use the tuple they grabbed.
        self._registrations: tuple[AdapterRegistration, ...] = ()
        self._registry_lock = asyncio.Lock()

    # -- lifecycle ---------------------------------------------------------

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state == "initialized"

    @property
    def config(self) -> ObservabilityConfig | None:
        return self._config

    def _ensure_initialized(self) -> None:
        if self._state == "uninitialized":
            raise NotInitializedError("TelemetryDispatcher not initialized. Call initialize() first.")
        if self._state == "disposed":
            raise DispatcherDisposedError("TelemetryDispatcher has been disposed")

    @property
    def _debug(self) -> bool:
        return self._config is not None and self._config.enable_debug_logging

    async def initialize(self, config: ObservabilityConfig) -> None:
        """Set up scrubbing, context, the offline buffer and configured backends."""
        if self._state != "uninitialized":
            raise AlreadyInitializedError("TelemetryDispatcher is already initialized")

        self._config = config
        self._scrubber = PrivacyScrubber(config.privacy)
        self._context = TelemetryContext(
            user_id=config.global_user_id,
            session_id=config.global_session_id or new_session_id(),
            global_context=dict(config.global_context),
        )

        if config.enable_offline_buffer:
            storage = self._storage or DuckDBBufferStorage(path=config.buffer_path)
            self._buffer = OfflineBuffer(
                storage=storage,
                max_buffer_size=config.max_buffer_size,
                flush_interval_s=config.flush_interval_s,
                on_flush=self._replay,
            )
            await self._buffer.initialize()

        self._state = "initialized"

        for backend_config in config.backend_configs:
            if not backend_config.enabled:
                continue
            try:
                await self.register_adapter(create_adapter(backend_config), backend_config)
            except Exception:  # noqa: BLE001 - one bad backend must not block the others
                logger.exception("Could not start backend for %s", type(backend_config).__name__)

    async def dispose(self) -> None:
        """Stop the buffer, dispose every adapter and enter the terminal state."""
        self._ensure_initialized()

        if self._buffer is not None:
            try:
                await self._buffer.dispose()
            except Exception:  # noqa: BLE001 - keep disposing adapters
                logger.warning("Offline buffer dispose failed", exc_info=True)
            self._buffer = None

        async with self._registry_lock:
            registrations, self._registrations = self._registrations, ()
        await self._for_each(registrations, lambda a: a.dispose(), action="dispose")

        self._context = TelemetryContext()
        self._state = "disposed"

    # -- adapters ----------------------------------------------------------

    @property
    def adapters(self) -> tuple[AdapterRegistration, ...]:
        return self._registrations

    async def register_adapter(self, adapter: BackendAdapter, config: BackendConfig) -> AdapterRegistration | None:
        """Initialize `adapter` with `config` and add it to the active set.

        Returns None (and registers nothing) when `config.enabled` is False.
        Initialization errors, including `ConfigMismatchError`, propagate.
        """
        self._ensure_initialized()
        if not config.enabled:
            return None

        async with self._registry_lock:
            if any(r.adapter is adapter for r in self._registrations):
                raise ValueError(f"Adapter {getattr(adapter, 'name', adapter)!r} is already registered")
            try:
                await adapter.initialize(config)
            except Exception as exc:
                if self._debug:
                    logger.warning("Failed to register adapter %s: %s", getattr(adapter, "name", adapter), exc)
                raise
            registration = AdapterRegistration(adapter=adapter, config=config)
            self._registrations = (*self._registrations, registration)

        user_id = self._context.user_id
        if user_id is not None:
            await self._for_each((registration,), lambda a: a.set_user_id(user_id), action="set_user_id")
        return registration

    async def unregister_adapter(self, adapter: BackendAdapter) -> bool:
        """Remove `adapter` from the active set and dispose it. Returns False if unknown."""
        self._ensure_initialized()
        async with self._registry_lock:
            removed = [r for r in self._registrations if r.adapter is adapter]
            if not removed:
                return False
            self._registrations = tuple(r for r in self._registrations if r.adapter is not adapter)
        await self._for_each(removed, lambda a: a.dispose(), action="dispose")
        return True

    # -- submission --------------------------------------------------------

    async def submit(self, record: TelemetryRecord) -> SubmitResult:
        """Gate, enrich, scrub and deliver a record to every matching adapter.

        Adapter failures never reach the caller; the record is buffered once
        instead. Raises `StorageUnavailableError` if buffering itself fails.
        """
        self._ensure_initialized()

        if not self._scrubber.is_enabled_for(record.kind):
            return SubmitResult(kind=record.kind, dropped=True)

        prepared = self._scrubber.scrub_record(self._enrich(record))

        registrations = self._registrations
        outcomes = await asyncio.gather(*(self._attempt(r, prepared) for r in registrations))
        delivered = tuple(r.name for r, outcome in zip(registrations, outcomes) if outcome == "delivered")
        failed = tuple(r.name for r, outcome in zip(registrations, outcomes) if outcome == "failed")

        buffered = False
        if failed and self._buffer is not None:
            try:
                await self._buffer.enqueue(prepared)
            except StorageUnavailableError:
                logger.exception("Could not buffer %s record after delivery failures", prepared.kind)
                raise
            buffered = True

        return SubmitResult(
            kind=prepared.kind,
            record=prepared,
            delivered=delivered,
            failed=failed,
            buffered=buffered,
        )

    def _enrich(self, record: TelemetryRecord) -> TelemetryRecord:
        """Fill gaps from the context; record-level values always win."""
        ctx = self._context
        update: dict[str, Any] = {}
        if record.user_id is None and ctx.user_id is not None:
            update["user_id"] = ctx.user_id
        if record.session_id is None and ctx.session_id is not None:
            update["session_id"] = ctx.session_id
        update["device_info"] = {**self._device_info.device_info(), **(record.device_info or {})}
        if ctx.global_context and isinstance(record, (TelemetryEvent, ErrorReport, LogEntry)):
            update["context"] = {**ctx.global_context, **record.context}
        return record.model_copy(update=update) if update else record

    async def _attempt(self, registration: AdapterRegistration, record: TelemetryRecord) -> AttemptOutcome:
        """Deliver to one adapter if it takes this kind; failures are reported, never raised.

        The capability check runs inside the same guard as delivery, so an
        adapter whose `supports`/`is_enabled` raises counts as a failed attempt.
        """
        try:
            if not registration.accepts(record.kind):
                return "skipped"
            await deliver(registration.adapter, record)
        except Exception as exc:  # noqa: BLE001 - isolate adapters from each other
            if self._debug:
                logger.warning("Adapter %s failed to deliver %s record: %s", registration.name, record.kind, exc)
            return "failed"
        return "delivered"

    async def _replay(self, item: BufferedItem) -> bool:
        """Offline buffer callback: True when at least one adapter took the record."""
        record = item.to_record()
        outcomes = await asyncio.gather(*(self._attempt(r, record) for r in self._registrations))
        return "delivered" in outcomes

    # -- record builders ---------------------------------------------------

    async def track_event(
        self,
        name: str,
        *,
        properties: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
    ) -> SubmitResult:
        return await self.submit(TelemetryEvent(name=name, properties=properties or {}, context=context or {}))

    async def capture_error(
        self,
        exc: BaseException,
        *,
        message: str | None = None,
        severity: ErrorSeverity = "medium",
        breadcrumbs: list[Breadcrumb] | None = None,
        context: dict[str, Any] | None = None,
    ) -> SubmitResult:
        report = ErrorReport.from_exception(
            exc, message=message, severity=severity, breadcrumbs=breadcrumbs, context=context
        )
        return await self.submit(report)

    async def log(
        self,
        level: LogLevel,
        message: str,
        *,
        labels: dict[str, str] | None = None,
        context: dict[str, Any] | None = None,
    ) -> SubmitResult:
        return await self.submit(LogEntry(level=level, message=message, labels=labels or {}, context=context or {}))

    async def trace(self, message: str, *, context: dict[str, Any] | None = None) -> SubmitResult:
        return await self.log("trace", message, context=context)

    async def debug(self, message: str, *, context: dict[str, Any] | None = None) -> SubmitResult:
        return await self.log("debug", message, context=context)

    async def info(self, message: str, *, context: dict[str, Any] | None = None) -> SubmitResult:
        return await self.log("info", message, context=context)

    async def warn(self, message: str, *, context: dict[str, Any] | None = None) -> SubmitResult:
        return await self.log("warn", message, context=context)

    async def error(self, message: str, *, context: dict[str, Any] | None = None) -> SubmitResult:
        return await self.log("error", message, context=context)

    async def fatal(self, message: str, *, context: dict[str, Any] | None = None) -> SubmitResult:
        return await self.log("fatal", message, context=context)

    async def record_metric(
        self,
        name: str,
        value: float,
        *,
        unit: str | None = None,
        tags: dict[str, str] | None = None,
        trace_id: str | None = None,
        span_id: str | None = None,
    ) -> SubmitResult:
        metric = Metric(name=name, value=value, unit=unit, tags=tags or {}, trace_id=trace_id, span_id=span_id)
        return await self.submit(metric)

    # -- context -----------------------------------------------------------

    @property
    def user_id(self) -> str | None:
        return self._context.user_id

    @property
    def session_id(self) -> str | None:
        return self._context.session_id

    @property
    def global_context(self) -> dict[str, Any]:
        return dict(self._context.global_context)

    async def set_user_id(self, user_id: str | None) -> None:
        """Set the current user and push it to every adapter (best-effort)."""
        self._ensure_initialized()
        self._context = self._context.with_user(user_id)
        await self._for_each(self._registrations, lambda a: a.set_user_id(user_id), action="set_user_id")

    async def set_user_properties(self, properties: dict[str, Any]) -> None:
        """Scrub `properties` and push them to every adapter (best-effort)."""
        self._ensure_initialized()
        scrubbed = self._scrubber.scrub(properties)
        await self._for_each(
            self._registrations, lambda a: a.set_user_properties(scrubbed), action="set_user_properties"
        )

    def set_global_context(self, context: dict[str, Any]) -> None:
        self._ensure_initialized()
        self._context = self._context.with_global_context(context)

    def add_global_context(self, key: str, value: Any) -> None:
        self._ensure_initialized()
        self._context = self._context.with_entry(key, value)

    def remove_global_context(self, key: str) -> None:
        self._ensure_initialized()
        self._context = self._context.without_entry(key)

    def start_new_session(self) -> str:
        """Replace the session id; returns the new id."""
        self._ensure_initialized()
        session_id = new_session_id()
        self._context = self._context.with_session(session_id)
        return session_id

    # -- offline buffer ----------------------------------------------------

    async def buffer_size(self) -> int | None:
        """Number of buffered records, or None when buffering is disabled."""
        self._ensure_initialized()
        if self._buffer is None:
            return None
        return await self._buffer.size()

    async def flush_buffer(self) -> int:
        """Replay buffered records now (no-op if a flush is already running)."""
        self._ensure_initialized()
        if self._buffer is None:
            return 0
        return await self._buffer.flush()

    async def _for_each(
        self,
        registrations: tuple[AdapterRegistration, ...] | list[AdapterRegistration],
        op: Callable[[BackendAdapter], Awaitable[None]],
        *,
        action: str,
    ) -> None:
        """Run `op` on every adapter concurrently; failures are logged, not raised."""

        async def _run(registration: AdapterRegistration) -> None:
            try:
                await op(registration.adapter)
            except Exception:  # noqa: BLE001 - best-effort propagation
                logger.warning("Adapter %s failed to %s", registration.name, action, exc_info=True)

        await asyncio.gather(*(_run(r) for r in registrations))
