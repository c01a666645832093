"""Telemetry record models.

Records are a closed set of frozen variants tagged by `kind`. Anything that
changes a record (enrichment, scrubbing) produces a new instance through
`model_copy(update=...)`.
"""

from __future__ import annotations

import traceback
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, TypeAlias, Union

from pydantic import BaseModel, ConfigDict, Field

RecordKind = Literal["event", "error", "log", "metric"]
RECORD_KINDS: tuple[RecordKind, ...] = ("event", "error", "log", "metric")

ErrorSeverity = Literal["low", "medium", "high", "critical"]
LogLevel = Literal["trace", "debug", "info", "warn", "error", "fatal"]


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(tz=timezone.utc)


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class Breadcrumb(_Model):
    """A user action or system step leading up to an error."""

    message: str
    timestamp: datetime = Field(default_factory=utc_now)
    category: str | None = None
    level: str | None = None
    data: dict[str, Any] | None = None


class _RecordBase(_Model):
    timestamp: datetime = Field(default_factory=utc_now)
    user_id: str | None = None
    session_id: str | None = None
    device_info: dict[str, Any] | None = None


class TelemetryEvent(_RecordBase):
    """A named user interaction or custom analytics event."""

    kind: Literal["event"] = "event"
    name: str
    properties: dict[str, Any] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)


class ErrorReport(_RecordBase):
    """An exception captured for error monitoring."""

    kind: Literal["error"] = "error"
    exception: str
    error_type: str | None = None
    message: str | None = None
    stack_trace: str | None = None
    severity: ErrorSeverity = "medium"
    # Insertion order is the caller's chronology; never re-sorted.
    breadcrumbs: list[Breadcrumb] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        *,
        message: str | None = None,
        severity: ErrorSeverity = "medium",
        breadcrumbs: list[Breadcrumb] | None = None,
        context: dict[str, Any] | None = None,
    ) -> "ErrorReport":
        """Build a report from a live exception, including its formatted traceback."""
        stack_trace = None
        if exc.__traceback__ is not None:
            stack_trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return cls(
            exception=str(exc) or type(exc).__name__,
            error_type=type(exc).__name__,
            message=message,
            stack_trace=stack_trace,
            severity=severity,
            breadcrumbs=list(breadcrumbs or []),
            context=dict(context or {}),
        )


class LogEntry(_RecordBase):
    """A structured log line."""

    kind: Literal["log"] = "log"
    level: LogLevel = "info"
    message: str
    labels: dict[str, str] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)


class Metric(_RecordBase):
    """A numeric measurement, optionally linked to a trace span."""

    kind: Literal["metric"] = "metric"
    name: str
    value: float
    unit: str | None = None
    tags: dict[str, str] = Field(default_factory=dict)
    trace_id: str | None = None
    span_id: str | None = None


TelemetryRecord: TypeAlias = Annotated[
    Union[TelemetryEvent, ErrorReport, LogEntry, Metric],
    Field(discriminator="kind"),
]


def parse_record(kind: RecordKind, payload: dict[str, Any]) -> TelemetryRecord:
    """Rebuild a record of the given kind from its JSON-mode payload."""
    match kind:
        case "event":
            return TelemetryEvent.model_validate(payload)
        case "error":
            return ErrorReport.model_validate(payload)
        case "log":
            return LogEntry.model_validate(payload)
        case "metric":
            return Metric.model_validate(payload)
    raise ValueError(f"Unknown record kind: {kind!r}")
