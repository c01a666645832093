"""Exception taxonomy for the delivery pipeline.

Only precondition violations, adapter configuration mismatches and storage
failures ever reach application code. Delivery failures are absorbed by the
dispatcher and turned into offline-buffer entries.
"""

from __future__ import annotations

from typing import Any


class OverwatchError(Exception):
    """Base class for every error raised by this package."""


class DispatcherStateError(OverwatchError, RuntimeError):
    """The dispatcher is in the wrong lifecycle state for the call."""


class NotInitializedError(DispatcherStateError):
    """An operation was called before `initialize()`."""


class AlreadyInitializedError(DispatcherStateError):
    """`initialize()` was called more than once."""


class DispatcherDisposedError(DispatcherStateError):
    """An operation was called after `dispose()`."""


class ConfigMismatchError(OverwatchError, TypeError):
    """An adapter received a config object of the wrong type."""


class DeliveryError(OverwatchError):
    """A backend could not accept a record."""


class BackendHttpError(DeliveryError):
    """HTTP-level error returned by a backend collector."""

    def __init__(self, *, status_code: int, payload: Any | None):
        """Create an error capturing HTTP status code and response body (if any)."""
        self.status_code = status_code
        self.payload = payload
        super().__init__(f"Backend HTTP {status_code}: {payload}")


class StorageUnavailableError(OverwatchError):
    """The offline buffer's storage could not persist an item."""
