from __future__ import annotations

import asyncio

import pytest

from overwatch.buffer import BufferedItem, InMemoryBufferStorage, OfflineBuffer
from overwatch.errors import StorageUnavailableError
from overwatch.models import LogEntry


class _Replayer:
    """Flush callback that records calls and answers from a script."""

    def __init__(self, *, succeed: bool = True) -> None:
        self.succeed = succeed
        self.calls: list[BufferedItem] = []
        self.raise_for: set[str] = set()

    async def __call__(self, item: BufferedItem) -> bool:
        self.calls.append(item)
        await asyncio.sleep(0)
        if item.payload["message"] in self.raise_for:
            raise RuntimeError("replay exploded")
        return self.succeed


class _GatedReplayer(_Replayer):
    """Holds every replay open until `release` is set, then reports failure."""

    def __init__(self) -> None:
        super().__init__(succeed=False)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, item: BufferedItem) -> bool:
        self.calls.append(item)
        self.started.set()
        await self.release.wait()
        return self.succeed


class _BrokenStorage(InMemoryBufferStorage):
    def store(self, item: BufferedItem) -> None:
        raise OSError("disk full")


async def _make_buffer(
    *,
    max_buffer_size: int = 10,
    replayer: _Replayer | None = None,
    storage: InMemoryBufferStorage | None = None,
    flush_interval_s: float = 3600.0,
) -> tuple[OfflineBuffer, InMemoryBufferStorage, _Replayer]:
    storage = storage or InMemoryBufferStorage()
    replayer = replayer or _Replayer()
    buffer = OfflineBuffer(
        storage=storage,
        max_buffer_size=max_buffer_size,
        flush_interval_s=flush_interval_s,
        on_flush=replayer,
    )
    await buffer.initialize()
    return buffer, storage, replayer


def _messages(storage: InMemoryBufferStorage) -> list[str]:
    return [i.payload["message"] for i in storage.retrieve()]


@pytest.mark.asyncio
async def test_capacity_two_evicts_oldest() -> None:
    buffer, storage, _ = await _make_buffer(max_buffer_size=2)
    try:
        for message in "ABC":
            await buffer.enqueue(LogEntry(message=message))

        assert await buffer.size() == 2
        assert _messages(storage) == ["B", "C"]
    finally:
        await buffer.dispose()


@pytest.mark.asyncio
async def test_enqueue_reflects_size_until_capacity() -> None:
    buffer, _, _ = await _make_buffer(max_buffer_size=3)
    try:
        sizes = []
        for message in "ABCDE":
            await buffer.enqueue(LogEntry(message=message))
            sizes.append(await buffer.size())
        assert sizes == [1, 2, 3, 3, 3]
    finally:
        await buffer.dispose()


@pytest.mark.asyncio
async def test_overfilled_storage_is_trimmed_to_capacity_on_enqueue() -> None:
    storage = InMemoryBufferStorage()
    storage.initialize()
    for message in "ABCDE":
        storage.store(BufferedItem.from_record(LogEntry(message=message)))

    buffer, _, _ = await _make_buffer(max_buffer_size=3, storage=storage)
    try:
        await buffer.enqueue(LogEntry(message="F"))
        assert _messages(storage) == ["D", "E", "F"]
    finally:
        await buffer.dispose()


@pytest.mark.asyncio
async def test_successful_flush_removes_items() -> None:
    buffer, storage, replayer = await _make_buffer()
    try:
        await buffer.enqueue(LogEntry(message="A"))
        await buffer.enqueue(LogEntry(message="B"))

        assert await buffer.flush() == 2
        assert [c.payload["message"] for c in replayer.calls] == ["A", "B"]
        assert storage.count() == 0
    finally:
        await buffer.dispose()


@pytest.mark.asyncio
async def test_failed_item_is_retried_then_dropped() -> None:
    buffer, storage, replayer = await _make_buffer(replayer=_Replayer(succeed=False))
    try:
        await buffer.enqueue(LogEntry(message="A"))

        for expected_retries in (1, 2, 3):
            await buffer.flush()
            (item,) = storage.retrieve()
            assert item.retry_count == expected_retries

        await buffer.flush()
        assert storage.count() == 0
        assert len(replayer.calls) == buffer.max_retries + 1
    finally:
        await buffer.dispose()


@pytest.mark.asyncio
async def test_retry_keeps_fifo_position() -> None:
    buffer, storage, replayer = await _make_buffer()
    try:
        await buffer.enqueue(LogEntry(message="A"))
        replayer.succeed = False
        await buffer.flush()
        await buffer.enqueue(LogEntry(message="B"))

        assert _messages(storage) == ["A", "B"]
    finally:
        await buffer.dispose()


@pytest.mark.asyncio
async def test_one_item_raising_does_not_abort_batch() -> None:
    buffer, storage, replayer = await _make_buffer()
    replayer.raise_for = {"A"}
    try:
        await buffer.enqueue(LogEntry(message="A"))
        await buffer.enqueue(LogEntry(message="B"))

        assert await buffer.flush() == 2

        (remaining,) = storage.retrieve()
        assert remaining.payload["message"] == "A"
        assert remaining.retry_count == 1
    finally:
        await buffer.dispose()


@pytest.mark.asyncio
async def test_flush_honours_batch_limit() -> None:
    buffer, storage, replayer = await _make_buffer()
    try:
        for message in "ABCD":
            await buffer.enqueue(LogEntry(message=message))

        assert await buffer.flush(batch_limit=3) == 3
        assert _messages(storage) == ["D"]
    finally:
        await buffer.dispose()


@pytest.mark.asyncio
async def test_concurrent_flush_is_single_flight() -> None:
    buffer, storage, replayer = await _make_buffer()
    try:
        for message in "ABC":
            await buffer.enqueue(LogEntry(message=message))

        first, second = await asyncio.gather(buffer.flush(), buffer.flush())

        assert sorted([first, second]) == [0, 3]
        assert [c.payload["message"] for c in replayer.calls] == ["A", "B", "C"]
        assert storage.count() == 0
        assert buffer.is_flushing is False
    finally:
        await buffer.dispose()


@pytest.mark.asyncio
async def test_enqueue_wraps_storage_failures() -> None:
    buffer, _, _ = await _make_buffer(storage=_BrokenStorage())
    try:
        with pytest.raises(StorageUnavailableError):
            await buffer.enqueue(LogEntry(message="A"))
    finally:
        await buffer.dispose()


@pytest.mark.asyncio
async def test_enqueue_requires_initialize() -> None:
    buffer = OfflineBuffer(
        storage=InMemoryBufferStorage(),
        max_buffer_size=5,
        flush_interval_s=3600.0,
        on_flush=_Replayer(),
    )
    with pytest.raises(RuntimeError):
        await buffer.enqueue(LogEntry(message="A"))


@pytest.mark.asyncio
async def test_timer_flushes_periodically_and_stops_on_dispose() -> None:
    buffer, storage, replayer = await _make_buffer(flush_interval_s=0.01)
    await buffer.enqueue(LogEntry(message="A"))

    deadline = asyncio.get_running_loop().time() + 2.0
    while storage.count() and asyncio.get_running_loop().time() < deadline:
        await asyncio.sleep(0.01)
    assert storage.count() == 0

    await buffer.dispose()
    calls = len(replayer.calls)
    await asyncio.sleep(0.05)
    assert len(replayer.calls) == calls


@pytest.mark.asyncio
async def test_clear_empties_buffer() -> None:
    buffer, _, _ = await _make_buffer()
    try:
        await buffer.enqueue(LogEntry(message="A"))
        await buffer.clear()
        assert await buffer.size() == 0
    finally:
        await buffer.dispose()


@pytest.mark.asyncio
async def test_item_evicted_during_failed_replay_stays_evicted() -> None:
    replayer = _GatedReplayer()
    buffer, storage, _ = await _make_buffer(max_buffer_size=2, replayer=replayer)
    try:
        await buffer.enqueue(LogEntry(message="A"))
        await buffer.enqueue(LogEntry(message="B"))

        flush = asyncio.create_task(buffer.flush(batch_limit=1))
        await replayer.started.wait()
        await buffer.enqueue(LogEntry(message="C"))
        replayer.release.set()
        assert await flush == 1

        assert await buffer.size() == 2
        assert _messages(storage) == ["B", "C"]
        assert all(i.retry_count == 0 for i in storage.retrieve())
    finally:
        await buffer.dispose()


@pytest.mark.asyncio
async def test_clear_during_failed_replay_empties_buffer() -> None:
    replayer = _GatedReplayer()
    buffer, storage, _ = await _make_buffer(replayer=replayer)
    try:
        await buffer.enqueue(LogEntry(message="A"))

        flush = asyncio.create_task(buffer.flush())
        await replayer.started.wait()
        await buffer.clear()
        replayer.release.set()
        await flush

        assert await buffer.size() == 0
    finally:
        await buffer.dispose()
