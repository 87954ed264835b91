"""
Versioned record store.

This module implements the synchronization protocol on top of a
StorageBackend:
- create: insert with version 1, rejecting any existing id
- get: point read, tombstones included
- list: change-feed page ordered by (updatedAt, id) with a hasMore flag
- update: optimistic concurrency, the caller submits current version + 1
- delete: replace with a tombstone (version -1, payload dropped)

Invariants:
    - updatedAt is always assigned here, never taken from the caller
    - version goes 1, 2, 3, ... and finally -1; nothing else is stored
    - The read-check-write of create/update/delete holds the per-record
      lock, so two writers never both succeed against the same version
    - A tombstone is terminal: updates are rejected as version conflicts

How to change safely:
    - Persistence details belong in the backends, not here
    - Keep the clock injectable; tests depend on controlling updatedAt
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from .base import StorageBackend
from .errors import AlreadyExistsError, MalformedInputError, NotFoundError, VersionConflictError
from .locks import KeyedLocks
from .types import (
    ID_FIELD,
    INITIAL_VERSION,
    RESERVED_FIELDS,
    TOMBSTONE_VERSION,
    VERSION_FIELD,
    Cursor,
    Page,
    Record,
    format_timestamp,
    normalize_record_id,
    utc_now,
    validate_store_name,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000


def clamp_limit(
    limit: int | None,
    default: int = DEFAULT_PAGE_SIZE,
    maximum: int = MAX_PAGE_SIZE,
) -> int:
    """Clamp a requested page size to [1, maximum]; None means default."""
    if limit is None:
        limit = default
    return min(max(1, limit), maximum)


def coerce_version(value: Any) -> int | None:
    """Interpret a submitted version, None if it is not an integer.

    Integral floats and numeric strings are accepted since JSON clients
    do not always keep integer types.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _payload(body: dict[str, Any]) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise MalformedInputError("Record body must be a JSON object")
    return {k: v for k, v in body.items() if k not in RESERVED_FIELDS}


class RecordStore:
    """Versioned record store over a pluggable backend.

    Attributes:
        backend: Persistence backend
        default_page_size: Page size used when list() gets no limit
        max_page_size: Upper bound for page sizes

    Example:
        >>> store = RecordStore(InMemoryBackend())
        >>> await store.backend.connect()
        >>> await store.create("memos", {"id": "a", "text": "hello"})
        >>> record = await store.get("memos", "a")
        >>> record.version
        1
    """

    def __init__(
        self,
        backend: StorageBackend,
        clock: Callable[[], datetime] = utc_now,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        """Initialize the record store.

        Args:
            backend: Storage backend (connected by the caller)
            clock: Source of updatedAt values
            default_page_size: Page size when none is requested
            max_page_size: Upper bound for page sizes
        """
        self.backend = backend
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self._clock = clock
        self._locks = KeyedLocks()

    def _now(self) -> str:
        return format_timestamp(self._clock())

    async def create(self, store: str, body: dict[str, Any]) -> Record:
        """Create a record with version 1.

        Client supplied version and updatedAt are discarded.

        Args:
            store: Store name
            body: Record fields, must include "id"

        Returns:
            The stored record

        Raises:
            InvalidNameError: If the store name or id is invalid
            MalformedInputError: If the body is not an object or lacks an id
            AlreadyExistsError: If the id exists, tombstones included
            StorageIOError: If persistence fails
        """
        validate_store_name(store)
        fields = _payload(body)
        record_id = normalize_record_id(body.get(ID_FIELD))

        async with self._locks.hold(store, record_id):
            if await self.backend.read(store, record_id) is not None:
                raise AlreadyExistsError(store, record_id)

            record = Record(
                id=record_id,
                version=INITIAL_VERSION,
                updated_at=self._now(),
                fields=fields,
            )
            await self.backend.write(store, record)

        logger.debug(
            "Created record",
            extra={"store": store, "id": record_id, "updated_at": record.updated_at},
        )
        return record

    async def get(self, store: str, record_id: str) -> Record:
        """Read one record, tombstones included.

        Raises:
            InvalidNameError: If the store name or id is invalid
            NotFoundError: If the record was never created
        """
        validate_store_name(store)
        record_id = normalize_record_id(record_id)

        record = await self.backend.read(store, record_id)
        if record is None:
            raise NotFoundError(store, record_id)
        return record

    async def list(
        self,
        store: str,
        cursor: Cursor | None = None,
        limit: int | None = None,
    ) -> Page:
        """Read one page of the change feed.

        Records, tombstones included, are ordered by (updatedAt, id). One
        record past the limit is fetched to decide has_more.

        Args:
            store: Store name
            cursor: Position after the last record seen, None for the start
            limit: Page size, clamped to [1, max_page_size]

        Returns:
            Page of at most `limit` records

        Raises:
            InvalidNameError: If the store name is invalid
        """
        validate_store_name(store)
        limit = clamp_limit(limit, self.default_page_size, self.max_page_size)

        records = await self.backend.scan(store, cursor, limit + 1)
        has_more = len(records) > limit
        return Page(records=records[:limit], has_more=has_more)

    async def update(self, store: str, record_id: str, body: dict[str, Any]) -> Record:
        """Replace a record's fields if the submitted version is current + 1.

        The body's "version" is the version the caller expects to create.
        Its "id" and "updatedAt" are ignored.

        Args:
            store: Store name
            record_id: Id of the record to update
            body: New record fields including "version"

        Returns:
            The stored record

        Raises:
            InvalidNameError: If the store name or id is invalid
            MalformedInputError: If the body is not an object
            NotFoundError: If the record does not exist
            VersionConflictError: If the version is not current + 1, or the
                record is a tombstone; carries the current record
        """
        validate_store_name(store)
        record_id = normalize_record_id(record_id)
        fields = _payload(body)
        submitted = coerce_version(body.get(VERSION_FIELD))

        async with self._locks.hold(store, record_id):
            current = await self.backend.read(store, record_id)
            if current is None:
                raise NotFoundError(store, record_id)

            expected = current.version + 1
            if current.is_tombstone or submitted != expected:
                logger.info(
                    "Version conflict",
                    extra={
                        "store": store,
                        "id": record_id,
                        "current_version": current.version,
                        "submitted_version": submitted,
                    },
                )
                raise VersionConflictError(store, current, submitted)

            record = Record(
                id=current.id,
                version=expected,
                updated_at=self._now(),
                fields=fields,
            )
            await self.backend.write(store, record)

        logger.debug(
            "Updated record",
            extra={"store": store, "id": record_id, "version": record.version},
        )
        return record

    async def delete(self, store: str, record_id: str) -> Record:
        """Replace a record with a tombstone.

        Deleting a tombstone is allowed and only refreshes updatedAt.

        Returns:
            The stored tombstone

        Raises:
            InvalidNameError: If the store name or id is invalid
            NotFoundError: If the record does not exist
        """
        validate_store_name(store)
        record_id = normalize_record_id(record_id)

        async with self._locks.hold(store, record_id):
            current = await self.backend.read(store, record_id)
            if current is None:
                raise NotFoundError(store, record_id)

            tombstone = Record(
                id=current.id,
                version=TOMBSTONE_VERSION,
                updated_at=self._now(),
            )
            await self.backend.write(store, tombstone)

        logger.debug(
            "Deleted record",
            extra={"store": store, "id": record_id, "was_tombstone": current.is_tombstone},
        )
        return tombstone

    async def list_stores(self) -> list[str]:
        """Names of all stores holding at least one record."""
        return await self.backend.list_stores()
