"""Bounded, persistent, retrying offline buffer.

Records that could not be delivered are stored here and replayed on a fixed
interval. Capacity is enforced by dropping the oldest items; each item is
retried a bounded number of times before it is discarded.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress

from ..errors import StorageUnavailableError
from ..models import TelemetryRecord
from .models import BufferedItem
from .storage import BufferStorage

logger = logging.getLogger("overwatch.buffer")

FlushCallback = Callable[[BufferedItem], Awaitable[bool]]

DEFAULT_BATCH_LIMIT = 50
DEFAULT_MAX_RETRIES = 3


class OfflineBuffer:
    """Stores undelivered records and replays them through `on_flush`."""

    def __init__(
        self,
        *,
        storage: BufferStorage,
        max_buffer_size: int,
        flush_interval_s: float,
        on_flush: FlushCallback,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        """Create a buffer over `storage`.

        Args:
            storage: Synchronous storage backend (called from a worker thread).
            max_buffer_size: Capacity; the oldest items are evicted to admit new ones.
            flush_interval_s: Period of the background flush task.
            on_flush: Replays one item; returns True when it was delivered.
            batch_limit: Max items replayed per flush.
            max_retries: Failed replays allowed before an item is discarded.
        """
        if max_buffer_size <= 0:
            raise ValueError(f"max_buffer_size must be > 0. Got: {max_buffer_size}")
        self._storage = storage
        self.max_buffer_size = max_buffer_size
        self.flush_interval_s = flush_interval_s
        self.batch_limit = batch_limit
        self.max_retries = max_retries
        self._on_flush = on_flush

        self._write_lock = asyncio.Lock()
        self._flushing = False
        self._timer: asyncio.Task[None] | None = None
        self._initialized = False

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    async def initialize(self) -> None:
        """Prepare storage and start the periodic flush task."""
        if self._initialized:
            return
        await asyncio.to_thread(self._storage.initialize)
        self._timer = asyncio.create_task(self._run_timer(), name="offline-buffer-flush")
        self._initialized = True

    async def enqueue(self, record: TelemetryRecord) -> BufferedItem:
        """Persist a record, evicting the oldest items if the buffer is full.

        Raises:
            StorageUnavailableError: the storage failed to count, evict or store.
        """
        if not self._initialized:
            raise RuntimeError("Buffer not initialized. Call initialize() first.")

        item = BufferedItem.from_record(record)
        async with self._write_lock:
            try:
                current = await asyncio.to_thread(self._storage.count)
                if current >= self.max_buffer_size:
                    oldest = await asyncio.to_thread(self._storage.retrieve, current - self.max_buffer_size + 1)
                    for old in oldest:
                        await asyncio.to_thread(self._storage.remove, old.id)
                    logger.debug("Evicted %d buffered item(s) to admit %s", len(oldest), item.id)
                await asyncio.to_thread(self._storage.store, item)
            except Exception as exc:  # noqa: BLE001 - normalize storage failures
                raise StorageUnavailableError(f"Could not buffer {record.kind} record: {exc}") from exc
        return item

    async def flush(self, batch_limit: int | None = None) -> int:
        """Replay up to `batch_limit` of the oldest items.

        Single-flight: if a flush is already running this returns 0 immediately.
        Returns the number of items attempted.
        """
        # Check-and-set with no await in between.
        if self._flushing or not self._initialized:
            return 0
        self._flushing = True
        try:
            limit = self.batch_limit if batch_limit is None else batch_limit
            items = await asyncio.to_thread(self._storage.retrieve, limit)
            for item in items:
                await self._replay(item)
            return len(items)
        finally:
            self._flushing = False

    async def _replay(self, item: BufferedItem) -> None:
        """Replay one item; never raises."""
        try:
            delivered = await self._on_flush(item)
        except Exception:  # noqa: BLE001 - one item must not abort the batch
            logger.warning("Replay of buffered item %s raised", item.id, exc_info=True)
            delivered = False

        try:
            async with self._write_lock:
                if delivered:
                    await asyncio.to_thread(self._storage.remove, item.id)
                elif item.retry_count < self.max_retries:
                    # Items evicted or cleared while the replay was in flight stay gone.
                    await asyncio.to_thread(self._storage.update_retry, item.id, item.retry_count + 1)
                else:
                    await asyncio.to_thread(self._storage.remove, item.id)
                    logger.info(
                        "Dropping buffered %s item %s after %d failed replays",
                        item.kind,
                        item.id,
                        item.retry_count + 1,
                    )
        except Exception:  # noqa: BLE001 - keep going with the rest of the batch
            logger.warning("Could not update buffered item %s", item.id, exc_info=True)

    async def size(self) -> int:
        return await asyncio.to_thread(self._storage.count)

    async def clear(self) -> None:
        async with self._write_lock:
            await asyncio.to_thread(self._storage.clear)

    async def dispose(self) -> None:
        """Stop the flush task and release storage. Does not flush first."""
        if self._timer is not None:
            self._timer.cancel()
            with suppress(asyncio.CancelledError):
                await self._timer
            self._timer = None
        if self._initialized:
            await asyncio.to_thread(self._storage.dispose)
        self._initialized = False

    async def _run_timer(self) -> None:
        """Background loop that flushes on a fixed interval."""
        while True:
            await asyncio.sleep(self.flush_interval_s)
            try:
                await self.flush()
            except Exception:  # noqa: BLE001 - the timer must outlive storage hiccups
                logger.warning("Periodic flush of offline buffer failed", exc_info=True)
