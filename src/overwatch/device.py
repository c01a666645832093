"""Device/host metadata attached to records during enrichment."""

from __future__ import annotations

import platform
from typing import Any, Protocol


class DeviceInfoProvider(Protocol):
    def device_info(self) -> dict[str, Any]:
        """Return a flat map describing the host the records originate from."""


class PlatformDeviceInfo:
    """Host metadata from the `platform` module, computed once and cached."""

    def __init__(self, *, app_version: str | None = None, build_number: str | None = None) -> None:
        self._app_version = app_version
        self._build_number = build_number
        self._cached: dict[str, Any] | None = None

    def device_info(self) -> dict[str, Any]:
        if self._cached is None:
            info: dict[str, Any] = {
                "platform": platform.system() or None,
                "platform_version": platform.release() or None,
                "device_model": platform.machine() or None,
                "runtime": f"{platform.python_implementation()} {platform.python_version()}",
            }
            if self._app_version is not None:
                info["app_version"] = self._app_version
            if self._build_number is not None:
                info["build_number"] = self._build_number
            self._cached = info
        return dict(self._cached)

    def clear_cache(self) -> None:
        self._cached = None
