"""
Error types for SyncDB SDK.

This module defines all exception types raised by the SDK:
- SyncDbError: Base exception
- ConnectionError: Server unreachable or timed out
- InvalidRequestError: Server rejected the request (400)
- NotFoundError: Record does not exist (404)
- AlreadyExistsError: Create with an id already in use (409)
- VersionConflictError: Stale update (409), carries the server's record
- ServerError: Server failed to process the request (5xx)

Invariants:
    - All errors inherit from SyncDbError
    - Errors include context for debugging
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SyncDbError(Exception):
    """Base exception for all SyncDB SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SYNCDB_ERROR"
        self.details = details or {}


class ConnectionError(SyncDbError):
    """Failed to reach the SyncDB server.

    Raised when:
    - Server is unreachable
    - Request times out
    """

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details={"address": address},
        )
        self.address = address


class InvalidRequestError(SyncDbError):
    """Server rejected the request as malformed.

    Raised when:
    - Store name or record id is invalid
    - Body is not a JSON object or lacks an id
    """

    def __init__(self, message: str, server_code: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="INVALID_REQUEST",
            details={"server_code": server_code},
        )
        self.server_code = server_code


class NotFoundError(SyncDbError):
    """Record not found."""

    def __init__(self, store: str, record_id: str) -> None:
        super().__init__(
            f"Record '{record_id}' not found in store '{store}'",
            code="NOT_FOUND",
            details={"store": store, "id": record_id},
        )
        self.store = store
        self.record_id = record_id


class AlreadyExistsError(SyncDbError):
    """A record with this id already exists (possibly as a tombstone)."""

    def __init__(self, store: str, record_id: str) -> None:
        super().__init__(
            f"Record '{record_id}' already exists in store '{store}'",
            code="ALREADY_EXISTS",
            details={"store": store, "id": record_id},
        )
        self.store = store
        self.record_id = record_id


class VersionConflictError(SyncDbError):
    """Update was based on a stale version.

    Attributes:
        current: The record as currently stored on the server; retry with
            current["version"] + 1 after merging
    """

    def __init__(self, store: str, record_id: str, current: Dict[str, Any]) -> None:
        super().__init__(
            f"Version conflict on '{record_id}' in store '{store}' "
            f"(server version {current.get('version')})",
            code="VERSION_CONFLICT",
            details={"store": store, "id": record_id},
        )
        self.store = store
        self.record_id = record_id
        self.current = current


class ServerError(SyncDbError):
    """Server failed while processing the request."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(
            message,
            code="SERVER_ERROR",
            details={"status_code": status_code},
        )
        self.status_code = status_code
