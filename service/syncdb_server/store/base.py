"""
Storage backend protocol for the record store.

The record store owns versioning, locking and tombstone rules; a backend
only persists whole records and answers ordered range scans. This keeps
persistence pluggable:

- InMemoryBackend: dict per store plus a sorted (updated_at, id) index
- FileBackend: one JSON file per record, one directory per store
- SqliteBackend: one SQLite database file per store

Invariants:
    - write() replaces the stored record atomically (all or nothing)
    - scan() returns records ordered by (updated_at_ms, id) ascending
    - read() and scan() include tombstones
    - Persistence failures surface as StorageIOError

How to change safely:
    - New backends must implement StorageBackend
    - Run the shared backend tests against any new implementation
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .types import Cursor, Record

if TYPE_CHECKING:
    from ..config import StorageConfig


@runtime_checkable
class StorageBackend(Protocol):
    """Protocol for record persistence backends.

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.connect()
        >>> await backend.write("memos", record)
        >>> page = await backend.scan("memos", cursor=None, limit=101)
    """

    @abstractmethod
    async def connect(self) -> None:
        """Prepare the backend for use.

        Raises:
            StorageIOError: If the storage location is unusable
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources held by the backend."""
        ...

    @abstractmethod
    async def read(self, store: str, record_id: str) -> Record | None:
        """Read one record, tombstones included.

        Returns:
            The record, or None if the id was never written

        Raises:
            StorageIOError: If the record cannot be read or decoded
        """
        ...

    @abstractmethod
    async def write(self, store: str, record: Record) -> None:
        """Insert or replace a record atomically.

        Creates the store on first write.

        Raises:
            StorageIOError: If the record cannot be persisted
        """
        ...

    @abstractmethod
    async def scan(self, store: str, cursor: Cursor | None, limit: int) -> list[Record]:
        """Read up to `limit` records following `cursor` in feed order.

        Args:
            store: Store name
            cursor: Position to resume after, None for the start of the feed
            limit: Maximum number of records to return

        Returns:
            Records ordered by (updated_at_ms, id); empty for unknown stores
        """
        ...

    @abstractmethod
    async def list_stores(self) -> list[str]:
        """Names of all stores that have at least one record, sorted."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether connect() has been called and close() has not."""
        ...


def create_backend(config: StorageConfig) -> StorageBackend:
    """Factory function to create a storage backend from configuration.

    Args:
        config: Storage configuration

    Returns:
        Appropriate StorageBackend implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StorageBackendKind
    from .files import FileBackend
    from .memory import InMemoryBackend
    from .sqlite import SqliteBackend

    if config.backend == StorageBackendKind.MEMORY:
        return InMemoryBackend()
    elif config.backend == StorageBackendKind.FILES:
        return FileBackend(config.storage_path)
    elif config.backend == StorageBackendKind.SQLITE:
        return SqliteBackend(
            config.storage_path,
            wal_mode=config.sqlite_wal_mode,
            busy_timeout_ms=config.sqlite_busy_timeout_ms,
        )
    else:
        raise ValueError(f"Unsupported storage backend: {config.backend}")
