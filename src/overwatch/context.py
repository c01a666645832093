"""Per-dispatcher telemetry context (current user, session and global context)."""

from __future__ import annotations

import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def new_session_id() -> str:
    return uuid.uuid4().hex


class TelemetryContext(BaseModel):
    """Immutable snapshot; the dispatcher swaps in a new instance on every change."""

    model_config = ConfigDict(frozen=True)

    user_id: str | None = None
    session_id: str | None = None
    global_context: dict[str, Any] = Field(default_factory=dict)

    def with_user(self, user_id: str | None) -> "TelemetryContext":
        return self.model_copy(update={"user_id": user_id})

    def with_session(self, session_id: str) -> "TelemetryContext":
        return self.model_copy(update={"session_id": session_id})

    def with_global_context(self, context: dict[str, Any]) -> "TelemetryContext":
        return self.model_copy(update={"global_context": dict(context)})

    def with_entry(self, key: str, value: Any) -> "TelemetryContext":
        return self.with_global_context({**self.global_context, key: value})

    def without_entry(self, key: str) -> "TelemetryContext":
        return self.with_global_context({k: v for k, v in self.global_context.items() if k != key})
