"""
SyncDB Client for Python SDK.

This module provides the client interface to one store on a SyncDB server:
- SyncClient: REST client (create / get / update / save / delete)
- ChangePage / ChangeCursor: change-feed paging
- iter_changes(): walk the feed from a saved cursor to its end

Example:
    >>> async with SyncClient("http://localhost:3000", "memos") as client:
    ...     await client.create({"id": "a", "text": "hello"})
    ...     record = await client.get("a")
    ...     await client.save({**record, "text": "hello again"})
    ...     async for change in client.iter_changes():
    ...         print(change["id"], change["version"])

Invariants:
    - Updates submit the version they create (current version + 1)
    - Tombstones (version -1) are yielded by the feed like any record;
      callers decide how to apply them locally
    - last_cursor only advances past records that were yielded
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx

from .errors import (
    AlreadyExistsError,
    ConnectionError,
    InvalidRequestError,
    NotFoundError,
    ServerError,
    SyncDbError,
    VersionConflictError,
)

logger = logging.getLogger(__name__)

STORE_NAME_REGEX = re.compile(r"^[a-zA-Z0-9_-]+$")
TOMBSTONE_VERSION = -1


def is_tombstone(record: dict[str, Any]) -> bool:
    """Whether a record from the feed marks a deletion."""
    return record.get("version") == TOMBSTONE_VERSION


@dataclass(frozen=True)
class ChangeCursor:
    """Position after a record in the change feed.

    Attributes:
        updated_at: updatedAt of the last record seen
        id: id of the last record seen
    """

    updated_at: str
    id: str

    @classmethod
    def after(cls, record: dict[str, Any]) -> ChangeCursor:
        return cls(updated_at=record["updatedAt"], id=str(record["id"]))

    def to_params(self) -> dict[str, str]:
        return {"after": self.updated_at, "after_id": self.id}


@dataclass
class ChangePage:
    """One page of the change feed.

    Attributes:
        records: Records in (updatedAt, id) order, tombstones included
        has_more: Whether the server holds more records past this page
    """

    records: list[dict[str, Any]] = field(default_factory=list)
    has_more: bool = False

    @property
    def next_cursor(self) -> ChangeCursor | None:
        if not self.records:
            return None
        return ChangeCursor.after(self.records[-1])


class SyncClient:
    """Async client for one store of a SyncDB server.

    Attributes:
        base_url: Server base URL
        store: Store name
        page_size: Records requested per feed page
        last_cursor: Position after the last record yielded by iter_changes
    """

    def __init__(
        self,
        base_url: str,
        store: str,
        page_size: int = 100,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Server base URL (e.g., "http://localhost:3000")
            store: Store name, [A-Za-z0-9_-]+
            page_size: Records per feed page
            timeout: Request timeout in seconds
            http_client: Optional preconfigured httpx client (not closed by us)

        Raises:
            ValueError: If the store name is invalid
        """
        if not STORE_NAME_REGEX.match(store):
            raise ValueError(f"Invalid store name: {store!r}")

        self.base_url = base_url.rstrip("/")
        self.store = store
        self.page_size = page_size
        self.timeout = timeout
        self.last_cursor: ChangeCursor | None = None
        self._client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> SyncClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def connect(self) -> None:
        """Create the underlying HTTP client if none was supplied."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True

    async def close(self) -> None:
        """Close the HTTP client if this object created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _record_path(self, record_id: str) -> str:
        return f"/{self.store}/{quote(str(record_id), safe='')}"

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if self._client is None:
            await self.connect()
        try:
            return await self._client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.TimeoutException as e:
            raise ConnectionError(f"Request timed out: {e}", address=self.base_url)
        except httpx.TransportError as e:
            raise ConnectionError(f"Cannot reach server: {e}", address=self.base_url)

    def _raise_for_error(self, response: httpx.Response, record_id: str | None = None) -> None:
        status = response.status_code
        if status < 400:
            return

        try:
            body = response.json()
        except ValueError:
            body = {}

        message = body.get("error") if isinstance(body, dict) else None
        message = message or f"HTTP {status}: {response.text}"

        if status == 400:
            raise InvalidRequestError(message, server_code=body.get("error_code"))
        if status == 404 and record_id is not None:
            raise NotFoundError(self.store, record_id)
        if status == 409 and record_id is not None:
            if response.request.method == "PUT" and isinstance(body, dict) and "version" in body:
                raise VersionConflictError(self.store, record_id, body)
            raise AlreadyExistsError(self.store, record_id)
        if status >= 500:
            raise ServerError(message, status_code=status)
        raise SyncDbError(message, code=f"HTTP_{status}")

    async def fetch_page(
        self,
        cursor: ChangeCursor | None = None,
        size: int | None = None,
    ) -> ChangePage:
        """Fetch one page of the change feed after `cursor`.

        Args:
            cursor: Position to resume after; None starts at the beginning
            size: Page size (server clamps to [1, 1000])

        Returns:
            ChangePage with records and the has_more flag
        """
        params: dict[str, Any] = {"size": str(size or self.page_size)}
        if cursor is not None:
            params.update(cursor.to_params())

        response = await self._request("GET", f"/{self.store}", params=params)
        self._raise_for_error(response)

        body = response.json()
        return ChangePage(records=body.get("data", []), has_more=bool(body.get("hasMore")))

    async def iter_changes(
        self,
        cursor: ChangeCursor | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield every record changed after `cursor`, following hasMore.

        After each yielded record, last_cursor points just past it, so a
        caller can persist it and resume later without gaps or repeats.

        Args:
            cursor: Position to resume after; None walks the whole feed
        """
        self.last_cursor = cursor
        while True:
            page = await self.fetch_page(self.last_cursor)
            for record in page.records:
                self.last_cursor = ChangeCursor.after(record)
                yield record

            if not page.has_more or not page.records:
                break

        logger.debug(
            "Change feed drained",
            extra={"store": self.store, "cursor": self.last_cursor},
        )

    async def create(self, record: dict[str, Any]) -> None:
        """Create a record; the server assigns version 1 and updatedAt.

        Raises:
            AlreadyExistsError: If the id is in use (tombstones included)
            InvalidRequestError: If the record has no valid id
        """
        record_id = record.get("id")
        response = await self._request("POST", f"/{self.store}", json=record)
        self._raise_for_error(response, str(record_id) if record_id is not None else None)

    async def get(self, record_id: str) -> dict[str, Any]:
        """Read one record (a tombstone has version -1).

        Raises:
            NotFoundError: If the record was never created
        """
        response = await self._request("GET", self._record_path(record_id))
        self._raise_for_error(response, record_id)
        return response.json()

    async def update(self, record_id: str, fields: dict[str, Any], version: int) -> None:
        """Replace a record's fields, creating `version`.

        Args:
            record_id: Record id
            fields: New payload (id/updatedAt in it are ignored by the server)
            version: The version to create, i.e. current version + 1

        Raises:
            VersionConflictError: If `version` is not current + 1; the
                exception carries the server's current record
            NotFoundError: If the record does not exist
        """
        body = {**fields, "id": record_id, "version": version}
        response = await self._request("PUT", self._record_path(record_id), json=body)
        self._raise_for_error(response, record_id)

    async def save(self, record: dict[str, Any]) -> None:
        """Write back a record previously read, bumping its version."""
        await self.update(str(record["id"]), record, record["version"] + 1)

    async def delete(self, record_id: str) -> None:
        """Replace a record with a tombstone.

        Raises:
            NotFoundError: If the record does not exist
        """
        response = await self._request("DELETE", self._record_path(record_id))
        self._raise_for_error(response, record_id)
