"""Offline buffer storage backends.

Storages are intentionally synchronous: `OfflineBuffer` runs every call through
`asyncio.to_thread`, keeping blocking I/O off the event loop.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import duckdb

from .models import BufferedItem


class BufferStorage(Protocol):
    """Ordered, durable store of buffered items (oldest first)."""

    def initialize(self) -> None:
        """Open resources / create schema. Safe to call twice."""

    def store(self, item: BufferedItem) -> None:
        """Persist a single item, replacing any stored item with the same id."""

    def retrieve(self, limit: int | None = None) -> list[BufferedItem]:
        """Return up to `limit` items, oldest first."""

    def update_retry(self, item_id: str, retry_count: int) -> None:
        """Set the retry count of a stored item; no-op if it is no longer stored."""

    def remove(self, item_id: str) -> None:
        """Delete an item by id (no-op if absent)."""

    def count(self) -> int:
        """Return the number of stored items."""

    def clear(self) -> None:
        """Delete every item."""

    def dispose(self) -> None:
        """Close any underlying resources."""


class InMemoryBufferStorage:
    """In-memory storage for tests and short-lived processes."""

    def __init__(self) -> None:
        """Create an empty in-memory storage."""
        self._lock = threading.Lock()
        self._items: dict[str, BufferedItem] = {}
        self._initialized = False

    def _check(self) -> None:
        if not self._initialized:
            raise RuntimeError("Storage not initialized")

    def initialize(self) -> None:
        self._initialized = True

    def store(self, item: BufferedItem) -> None:
        with self._lock:
            self._check()
            self._items[item.id] = item

    def retrieve(self, limit: int | None = None) -> list[BufferedItem]:
        with self._lock:
            self._check()
            items = sorted(self._items.values(), key=lambda i: i.id)
        return items if limit is None else items[:limit]

    def update_retry(self, item_id: str, retry_count: int) -> None:
        with self._lock:
            self._check()
            current = self._items.get(item_id)
            if current is not None:
                self._items[item_id] = current.model_copy(update={"retry_count": retry_count})

    def remove(self, item_id: str) -> None:
        with self._lock:
            self._check()
            self._items.pop(item_id, None)

    def count(self) -> int:
        with self._lock:
            self._check()
            return len(self._items)

    def clear(self) -> None:
        with self._lock:
            self._check()
            self._items.clear()

    def dispose(self) -> None:  # noqa: D401 - keep interface consistent
        """Drop everything; in-memory storage is not durable."""
        with self._lock:
            self._items.clear()
            self._initialized = False


@dataclass(frozen=True)
class DuckDBOptions:
    path: Path
    table: str = "buffered_items"


class DuckDBBufferStorage:
    """DuckDB storage for durable local persistence across restarts."""

    def __init__(self, *, path: str | Path, table: str = "buffered_items") -> None:
        """Describe a DuckDB-backed storage; the file is opened by `initialize()`."""
        self._opts = DuckDBOptions(path=Path(path), table=table)
        self._lock = threading.Lock()
        self._conn: duckdb.DuckDBPyConnection | None = None

    def _connection(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise RuntimeError("Storage not initialized")
        return self._conn

    def initialize(self) -> None:
        """Open the database file and create the backing table if needed."""
        # Timestamps are stored as ISO strings; ids already encode FIFO order.
        create_sql = f"""
        create table if not exists {self._opts.table} (
          id varchar primary key,
          kind varchar not null,
          payload_json varchar not null,
          enqueued_at varchar not null,
          retry_count integer not null
        )
        """
        with self._lock:
            if self._conn is not None:
                return
            self._conn = duckdb.connect(str(self._opts.path))
            self._conn.execute(create_sql)

    def store(self, item: BufferedItem) -> None:
        payload_json = json.dumps(item.payload, separators=(",", ":"), sort_keys=True, default=str)
        insert_sql = f"""
        insert or replace into {self._opts.table}
        (id, kind, payload_json, enqueued_at, retry_count)
        values (?, ?, ?, ?, ?)
        """
        with self._lock:
            self._connection().execute(
                insert_sql,
                [item.id, item.kind, payload_json, item.enqueued_at.isoformat(), item.retry_count],
            )

    def retrieve(self, limit: int | None = None) -> list[BufferedItem]:
        select_sql = f"select id, kind, payload_json, enqueued_at, retry_count from {self._opts.table} order by id"
        if limit is not None:
            select_sql += f" limit {int(limit)}"
        with self._lock:
            rows = self._connection().execute(select_sql).fetchall()
        return [
            BufferedItem(
                id=row[0],
                kind=row[1],
                payload=json.loads(row[2]),
                enqueued_at=row[3],
                retry_count=row[4],
            )
            for row in rows
        ]

    def update_retry(self, item_id: str, retry_count: int) -> None:
        with self._lock:
            self._connection().execute(
                f"update {self._opts.table} set retry_count = ? where id = ?", [retry_count, item_id]
            )

    def remove(self, item_id: str) -> None:
        with self._lock:
            self._connection().execute(f"delete from {self._opts.table} where id = ?", [item_id])

    def count(self) -> int:
        with self._lock:
            row = self._connection().execute(f"select count(*) from {self._opts.table}").fetchone()
        return int(row[0]) if row else 0

    def clear(self) -> None:
        with self._lock:
            self._connection().execute(f"delete from {self._opts.table}")

    def dispose(self) -> None:
        """Close the underlying DuckDB connection (buffered rows stay on disk)."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
