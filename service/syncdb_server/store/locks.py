"""
Per-record lock registry.

Writers serialize on a lock keyed by (store, record_id); unrelated
records never contend. Locks are created on first use and dropped as
soon as no coroutine holds or waits on them, so the registry only ever
contains keys with in-flight writes.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

LockKey = tuple[str, str]


@dataclass
class _Entry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLocks:
    """Lazily created asyncio locks keyed by (store, record_id).

    Example:
        >>> locks = KeyedLocks()
        >>> async with locks.hold("memos", "a"):
        ...     ...  # read-check-write for record "a"
    """

    def __init__(self) -> None:
        self._entries: dict[LockKey, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: LockKey) -> bool:
        return key in self._entries

    @asynccontextmanager
    async def hold(self, store: str, record_id: str) -> AsyncIterator[None]:
        """Hold the lock for one record for the duration of the block."""
        key = (store, record_id)
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]
