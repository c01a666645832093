"""Durable envelope for records waiting in the offline buffer."""

from __future__ import annotations

import itertools
import time
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..models import RecordKind, TelemetryRecord, parse_record, utc_now

_sequence = itertools.count()


def new_item_id() -> str:
    """Return an id whose lexical order matches creation order.

    Wall-clock nanoseconds order ids across processes; the sequence breaks
    ties inside one process.
    """
    return f"{time.time_ns():019d}-{next(_sequence) % 100_000_000:08d}"


class BufferedItem(BaseModel):
    """A serialized record plus its retry bookkeeping."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(default_factory=new_item_id)
    kind: RecordKind
    payload: dict[str, Any]
    enqueued_at: datetime = Field(default_factory=utc_now)
    retry_count: int = Field(default=0, ge=0)

    @classmethod
    def from_record(cls, record: TelemetryRecord) -> "BufferedItem":
        return cls(kind=record.kind, payload=record.model_dump(mode="json"))

    def to_record(self) -> TelemetryRecord:
        return parse_record(self.kind, self.payload)
