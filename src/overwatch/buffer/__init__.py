"""Offline buffer: durable envelope, storages and the retrying buffer."""

from .models import BufferedItem
from .offline import OfflineBuffer
from .storage import BufferStorage, DuckDBBufferStorage, InMemoryBufferStorage

__all__ = [
    "BufferStorage",
    "BufferedItem",
    "DuckDBBufferStorage",
    "InMemoryBufferStorage",
    "OfflineBuffer",
]
