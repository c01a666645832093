"""overwatch: telemetry delivery pipeline.

Records (events, errors, logs, metrics) are enriched with the current context,
scrubbed of PII, fanned out concurrently to backend adapters, and buffered
durably when a backend cannot take them.
"""

from .adapters import AdapterRegistration, BackendAdapter, FaroAdapter, LokiAdapter, register_adapter_factory
from .buffer import BufferedItem, BufferStorage, DuckDBBufferStorage, InMemoryBufferStorage, OfflineBuffer
from .config import BackendConfig, FaroConfig, LokiConfig, ObservabilityConfig, PrivacyConfig, load_config
from .context import TelemetryContext
from .device import DeviceInfoProvider, PlatformDeviceInfo
from .dispatcher import SubmitResult, TelemetryDispatcher
from .errors import (
    AlreadyInitializedError,
    BackendHttpError,
    ConfigMismatchError,
    DeliveryError,
    DispatcherDisposedError,
    DispatcherStateError,
    NotInitializedError,
    OverwatchError,
    StorageUnavailableError,
)
from .models import Breadcrumb, ErrorReport, LogEntry, Metric, RecordKind, TelemetryEvent, TelemetryRecord
from .privacy import DEFAULT_PII_PATTERNS, REDACTION_TOKEN, PrivacyScrubber

__all__ = [
    "AdapterRegistration",
    "AlreadyInitializedError",
    "BackendAdapter",
    "BackendConfig",
    "BackendHttpError",
    "Breadcrumb",
    "BufferStorage",
    "BufferedItem",
    "ConfigMismatchError",
    "DEFAULT_PII_PATTERNS",
    "DeliveryError",
    "DeviceInfoProvider",
    "DispatcherDisposedError",
    "DispatcherStateError",
    "DuckDBBufferStorage",
    "ErrorReport",
    "FaroAdapter",
    "FaroConfig",
    "InMemoryBufferStorage",
    "LogEntry",
    "LokiAdapter",
    "LokiConfig",
    "Metric",
    "NotInitializedError",
    "ObservabilityConfig",
    "OfflineBuffer",
    "OverwatchError",
    "PlatformDeviceInfo",
    "PrivacyConfig",
    "PrivacyScrubber",
    "REDACTION_TOKEN",
    "RecordKind",
    "StorageUnavailableError",
    "SubmitResult",
    "TelemetryContext",
    "TelemetryDispatcher",
    "TelemetryEvent",
    "TelemetryRecord",
    "load_config",
]
