from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def _no_threads_in_unit_tests(monkeypatch: pytest.MonkeyPatch):
    """Run `asyncio.to_thread` inline for unit tests.

    Buffer storages and HTTP pushes run through `asyncio.to_thread`. In unit
    tests this would create threadpool workers that can keep the Python
    process alive longer than expected under some runtimes.
    """

    async def _to_thread(func, /, *args, **kwargs):  # noqa: ANN001, D401
        return func(*args, **kwargs)

    monkeypatch.setattr("overwatch.buffer.offline.asyncio.to_thread", _to_thread)
    yield
