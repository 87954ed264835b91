"""
Error types for the record store.

All store failures derive from StoreError and carry a stable code that
the HTTP layer maps to a status:

- InvalidNameError (INVALID_NAME): malformed store name or record id
- MalformedInputError (MALFORMED_INPUT): unparseable payload or query
- AlreadyExistsError (ALREADY_EXISTS): create with an id already in use
- NotFoundError (NOT_FOUND): record missing on read/update/delete
- VersionConflictError (VERSION_CONFLICT): stale update, carries the
  current record so the caller can retry without another read
- StorageIOError (STORAGE_IO): persistence failure for one request

Invariants:
    - InvalidNameError and MalformedInputError are raised before any
      storage access
    - StorageIOError never leaves a record partially written
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .types import Record


class StoreError(Exception):
    """Base exception for all record store errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "STORE_ERROR"
        self.details = details or {}


class InvalidNameError(StoreError):
    """Store name or record id is not acceptable."""

    def __init__(self, message: str, kind: str, name: str) -> None:
        super().__init__(message, code="INVALID_NAME", details={"kind": kind, "name": name})
        self.kind = kind
        self.name = name


class MalformedInputError(StoreError):
    """Request payload or query could not be interpreted."""

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(message, code="MALFORMED_INPUT", details={"field": field_name})
        self.field_name = field_name


class AlreadyExistsError(StoreError):
    """A record with this id exists (tombstones included)."""

    def __init__(self, store: str, record_id: str) -> None:
        super().__init__(
            f"Record '{record_id}' already exists in store '{store}'",
            code="ALREADY_EXISTS",
            details={"store": store, "id": record_id},
        )
        self.store = store
        self.record_id = record_id


class NotFoundError(StoreError):
    """No record with this id."""

    def __init__(self, store: str, record_id: str) -> None:
        super().__init__(
            f"Record '{record_id}' not found in store '{store}'",
            code="NOT_FOUND",
            details={"store": store, "id": record_id},
        )
        self.store = store
        self.record_id = record_id


class VersionConflictError(StoreError):
    """Submitted version is not the current version + 1.

    Attributes:
        current: The authoritative stored record
        submitted: The version the caller sent (None if missing/invalid)
    """

    def __init__(self, store: str, current: Record, submitted: int | None) -> None:
        super().__init__(
            f"Version conflict on '{current.id}' in store '{store}': "
            f"submitted {submitted}, current {current.version}",
            code="VERSION_CONFLICT",
            details={"store": store, "id": current.id, "submitted": submitted},
        )
        self.store = store
        self.current = current
        self.submitted = submitted


class StorageIOError(StoreError):
    """Underlying persistence failed."""

    def __init__(self, message: str, store: str | None = None) -> None:
        super().__init__(message, code="STORAGE_IO", details={"store": store})
        self.store = store
