"""
SyncDB Python SDK - Client library for SyncDB servers.

This SDK talks to one store of a SyncDB server over HTTP:
- SyncClient for create / get / update / save / delete
- Change-feed paging with ChangeCursor / ChangePage
- Typed errors for conflicts, missing records and server failures

Example:
    >>> from syncdb_sdk import SyncClient, VersionConflictError
    >>>
    >>> async with SyncClient("http://localhost:3000", "memos") as client:
    ...     await client.create({"id": "a", "text": "hello"})
    ...     record = await client.get("a")
    ...     try:
    ...         await client.save({**record, "text": "edited"})
    ...     except VersionConflictError as e:
    ...         record = e.current  # merge and retry

Invariants:
    - Updates send current version + 1
    - A 409 on update always carries the server's current record

Version: 1.0.0
"""

__version__ = "1.0.0"

from .client import ChangeCursor, ChangePage, SyncClient, is_tombstone
from .errors import (
    AlreadyExistsError,
    ConnectionError,
    InvalidRequestError,
    NotFoundError,
    ServerError,
    SyncDbError,
    VersionConflictError,
)

__all__ = [
    # Version
    "__version__",
    # Client
    "SyncClient",
    "ChangeCursor",
    "ChangePage",
    "is_tombstone",
    # Errors
    "SyncDbError",
    "ConnectionError",
    "InvalidRequestError",
    "NotFoundError",
    "AlreadyExistsError",
    "VersionConflictError",
    "ServerError",
]
