"""
Versioned record store for SyncDB.

This module provides the synchronization core:
- RecordStore: create / get / list / update / delete with versioning
- StorageBackend protocol with in-memory, file and SQLite backends
- KeyedLocks for per-record mutual exclusion

Invariants:
    - version is 1 on creation, +1 per update, -1 once deleted
    - updatedAt is assigned by the store on every write
    - The change feed is ordered by (updatedAt, id) and includes tombstones

How to change safely:
    - Backends must pass the shared backend tests
    - Never let a write bypass RecordStore's per-record lock
"""

from .base import StorageBackend, create_backend
from .errors import (
    AlreadyExistsError,
    InvalidNameError,
    MalformedInputError,
    NotFoundError,
    StorageIOError,
    StoreError,
    VersionConflictError,
)
from .files import FileBackend
from .locks import KeyedLocks
from .memory import InMemoryBackend
from .record_store import RecordStore, clamp_limit
from .sqlite import SqliteBackend
from .types import TOMBSTONE_VERSION, Cursor, Page, Record

__all__ = [
    # Store
    "RecordStore",
    "clamp_limit",
    "KeyedLocks",
    # Types
    "Record",
    "Cursor",
    "Page",
    "TOMBSTONE_VERSION",
    # Backends
    "StorageBackend",
    "create_backend",
    "InMemoryBackend",
    "FileBackend",
    "SqliteBackend",
    # Errors
    "StoreError",
    "InvalidNameError",
    "MalformedInputError",
    "AlreadyExistsError",
    "NotFoundError",
    "VersionConflictError",
    "StorageIOError",
]
