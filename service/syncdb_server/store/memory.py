"""
In-memory storage backend.

This module provides a backend that keeps every store in process memory:
- Unit tests
- Local development without a data directory
- Ephemeral sync servers

Invariants:
    - All data is lost on process exit
    - The index of each store is always sorted by (updated_at_ms, id)
    - Records handed out are copies; callers cannot mutate stored state

How to change safely:
    - Keep behavior identical to the durable backends
    - The shared backend tests must pass unchanged
"""

from __future__ import annotations

import bisect
import copy
import logging
from dataclasses import dataclass, field

from .errors import StorageIOError
from .types import Cursor, Record

logger = logging.getLogger(__name__)


@dataclass
class InMemoryStore:
    """Records of one store and their feed-order index."""

    records: dict[str, Record] = field(default_factory=dict)
    index: list[tuple[int, str]] = field(default_factory=list)

    def put(self, record: Record) -> None:
        previous = self.records.get(record.id)
        if previous is not None:
            old_key = previous.sort_key
            pos = bisect.bisect_left(self.index, old_key)
            if pos < len(self.index) and self.index[pos] == old_key:
                del self.index[pos]
        self.records[record.id] = record
        bisect.insort(self.index, record.sort_key)

    def start_position(self, cursor: Cursor | None) -> int:
        """Index of the first key that follows the cursor."""
        if cursor is None:
            return 0
        if cursor.after_id is None:
            # (ms + 1,) sorts before every key with that timestamp.
            return bisect.bisect_left(self.index, (cursor.after_ms + 1,))
        return bisect.bisect_right(self.index, (cursor.after_ms, cursor.after_id))


class InMemoryBackend:
    """In-memory implementation of StorageBackend.

    Thread safety:
        Intended for a single event loop. Every method runs without
        awaiting, so each call is atomic with respect to other coroutines.

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.connect()
        >>> await backend.write("memos", record)
    """

    def __init__(self) -> None:
        self._stores: dict[str, InMemoryStore] = {}
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryBackend connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._stores.clear()
        logger.debug("InMemoryBackend closed")

    def _check_connected(self) -> None:
        if not self._connected:
            raise StorageIOError("In-memory backend is not connected")

    async def read(self, store: str, record_id: str) -> Record | None:
        self._check_connected()
        bucket = self._stores.get(store)
        if bucket is None:
            return None
        record = bucket.records.get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def write(self, store: str, record: Record) -> None:
        self._check_connected()
        bucket = self._stores.get(store)
        if bucket is None:
            bucket = self._stores[store] = InMemoryStore()
        bucket.put(copy.deepcopy(record))

    async def scan(self, store: str, cursor: Cursor | None, limit: int) -> list[Record]:
        self._check_connected()
        bucket = self._stores.get(store)
        if bucket is None:
            return []
        start = bucket.start_position(cursor)
        keys = bucket.index[start : start + limit]
        return [copy.deepcopy(bucket.records[record_id]) for _, record_id in keys]

    async def list_stores(self) -> list[str]:
        self._check_connected()
        return sorted(self._stores)

    # Testing helpers

    def record_count(self, store: str) -> int:
        """Number of records (tombstones included) in a store."""
        bucket = self._stores.get(store)
        return len(bucket.records) if bucket else 0
