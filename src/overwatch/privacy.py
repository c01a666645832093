"""PII scrubbing and per-kind feature gates.

`PrivacyScrubber.scrub` is a pure function over strings and arbitrarily nested
mappings/lists. Patterns are applied one pass each, defaults first and then the
caller's custom patterns in declaration order, so overlapping matches resolve
to whichever pattern runs first.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from .config import PrivacyConfig
from .models import Breadcrumb, ErrorReport, LogEntry, Metric, RecordKind, TelemetryEvent, TelemetryRecord

REDACTION_TOKEN = "[REDACTED]"

DEFAULT_PII_PATTERNS: tuple[str, ...] = (
    r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b",  # email
    r"\b(?:\+?1[-.\s]?)?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}\b",  # phone
    r"\b[0-9]{4}[-\s]?[0-9]{4}[-\s]?[0-9]{4}[-\s]?[0-9]{4}\b",  # credit card
    r"\b[0-9]{3}-[0-9]{2}-[0-9]{4}\b",  # SSN
    r"\b[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\b",  # IPv4
)


class PrivacyScrubber:
    """Applies the configured PII patterns to records and payloads."""

    def __init__(self, config: PrivacyConfig) -> None:
        self._config = config
        self._patterns: tuple[re.Pattern[str], ...] = tuple(
            re.compile(p) for p in (*DEFAULT_PII_PATTERNS, *config.pii_patterns)
        )

    @property
    def enabled(self) -> bool:
        return self._config.scrub_pii

    @property
    def analytics_enabled(self) -> bool:
        return self._config.enable_analytics

    @property
    def error_reporting_enabled(self) -> bool:
        return self._config.enable_error_reporting

    @property
    def performance_monitoring_enabled(self) -> bool:
        return self._config.enable_performance_monitoring

    @property
    def logging_enabled(self) -> bool:
        return self._config.enable_logging

    def is_enabled_for(self, kind: RecordKind) -> bool:
        """Return whether records of `kind` may be collected at all."""
        match kind:
            case "event":
                return self.analytics_enabled
            case "error":
                return self.error_reporting_enabled
            case "log":
                return self.logging_enabled
            case "metric":
                return self.performance_monitoring_enabled
        raise ValueError(f"Unknown record kind: {kind!r}")

    def scrub_string(self, value: str) -> str:
        if not self._config.scrub_pii:
            return value
        for pattern in self._patterns:
            value = pattern.sub(REDACTION_TOKEN, value)
        return value

    def scrub(self, payload: Any) -> Any:
        """Scrub a string, or recurse through mappings and lists.

        Non-string leaves are returned unchanged. With scrubbing disabled the
        payload itself is returned.
        """
        if not self._config.scrub_pii:
            return payload
        if isinstance(payload, str):
            return self.scrub_string(payload)
        if isinstance(payload, Mapping):
            return {key: self.scrub(value) for key, value in payload.items()}
        if isinstance(payload, (list, tuple)):
            return [self.scrub(item) for item in payload]
        return payload

    def scrub_record(self, record: TelemetryRecord) -> TelemetryRecord:
        """Return a copy of `record` with its free-text and map fields scrubbed."""
        if not self._config.scrub_pii:
            return record

        update: dict[str, Any] = {}
        if record.device_info is not None:
            update["device_info"] = self.scrub(record.device_info)

        if isinstance(record, TelemetryEvent):
            update["properties"] = self.scrub(record.properties)
            update["context"] = self.scrub(record.context)
        elif isinstance(record, ErrorReport):
            update["exception"] = self.scrub_string(record.exception)
            if record.message is not None:
                update["message"] = self.scrub_string(record.message)
            if record.stack_trace is not None:
                update["stack_trace"] = self.scrub_string(record.stack_trace)
            update["breadcrumbs"] = [self._scrub_breadcrumb(b) for b in record.breadcrumbs]
            update["context"] = self.scrub(record.context)
        elif isinstance(record, LogEntry):
            update["message"] = self.scrub_string(record.message)
            update["labels"] = self.scrub(record.labels)
            update["context"] = self.scrub(record.context)
        elif isinstance(record, Metric):
            update["tags"] = self.scrub(record.tags)

        return record.model_copy(update=update)

    def _scrub_breadcrumb(self, breadcrumb: Breadcrumb) -> Breadcrumb:
        update: dict[str, Any] = {"message": self.scrub_string(breadcrumb.message)}
        if breadcrumb.data is not None:
            update["data"] = self.scrub(breadcrumb.data)
        return breadcrumb.model_copy(update=update)
