"""
File-per-record storage backend.

Layout under the storage root:

    <root>/<store>/<record_id>.json

Each file holds one record serialized as a flat JSON object. This is the
layout SyncedDB file servers traditionally use, so an existing data
directory can be served as-is.

Invariants:
    - Writes go to a temporary file in the store directory and are moved
      into place with os.replace, so a record file is never half-written
    - A corrupt record file only affects requests for that record; scans
      skip it with a warning
    - Blocking file I/O runs in the default executor

How to change safely:
    - Keep the on-disk format a flat JSON object per record
    - Temporary files must not end in ".json" or scans would pick them up
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path

from .errors import MalformedInputError, StorageIOError
from .types import STORE_NAME_PATTERN, Cursor, Record

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"
TEMP_SUFFIX = ".tmp"


class FileBackend:
    """StorageBackend storing one JSON file per record.

    Scans read the whole store directory and sort in memory, which is
    fine for the per-user collections this server is meant for.

    Example:
        >>> backend = FileBackend("/var/lib/syncdb")
        >>> await backend.connect()
        >>> await backend.write("memos", record)
    """

    def __init__(self, storage_path: str) -> None:
        """Initialize the file backend.

        Args:
            storage_path: Root directory; one subdirectory per store
        """
        self.root = Path(storage_path)
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _store_dir(self, store: str) -> Path:
        return self.root / store

    def _record_path(self, store: str, record_id: str) -> Path:
        return self._store_dir(store) / f"{record_id}{RECORD_SUFFIX}"

    async def _run(self, func, *args):
        return await asyncio.get_event_loop().run_in_executor(None, func, *args)

    async def connect(self) -> None:
        try:
            await self._run(lambda: self.root.mkdir(parents=True, exist_ok=True))
        except OSError as e:
            raise StorageIOError(f"Cannot create storage root {self.root}: {e}")
        self._connected = True
        logger.info(f"FileBackend ready at {self.root}")

    async def close(self) -> None:
        self._connected = False

    # Blocking helpers, executed off the event loop

    def _load(self, path: Path, store: str) -> Record:
        try:
            text = path.read_text(encoding="utf-8")
            data = json.loads(text)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageIOError(f"Cannot read record file {path}: {e}", store=store)
        if not isinstance(data, dict):
            raise StorageIOError(f"Record file {path} does not hold a JSON object", store=store)
        try:
            return Record.from_dict(data)
        except MalformedInputError as e:
            raise StorageIOError(f"Record file {path} is invalid: {e.message}", store=store)

    def _read_sync(self, store: str, record_id: str) -> Record | None:
        path = self._record_path(store, record_id)
        try:
            if not path.is_file():
                return None
        except OSError as e:
            raise StorageIOError(f"Cannot stat record file {path}: {e}", store=store)
        return self._load(path, store)

    def _write_sync(self, store: str, record: Record) -> None:
        store_dir = self._store_dir(store)
        path = self._record_path(store, record.id)
        tmp_path: str | None = None
        try:
            store_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=store_dir, prefix=".", suffix=TEMP_SUFFIX)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, separators=(",", ":"))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
            tmp_path = None
        except (OSError, TypeError, ValueError) as e:
            raise StorageIOError(f"Cannot write record {record.id!r}: {e}", store=store)
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    logger.warning(f"Could not remove temporary file {tmp_path}")

    def _scan_sync(self, store: str, cursor: Cursor | None, limit: int) -> list[Record]:
        store_dir = self._store_dir(store)
        try:
            paths = [p for p in store_dir.iterdir() if p.name.endswith(RECORD_SUFFIX)]
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageIOError(f"Cannot list store directory {store_dir}: {e}", store=store)

        keyed: list[tuple[tuple[int, str], Record]] = []
        for path in paths:
            try:
                record = self._load(path, store)
                key = record.sort_key
            except (StorageIOError, MalformedInputError) as e:
                logger.warning(
                    "Skipping unreadable record file",
                    extra={"store": store, "path": str(path), "error": str(e)},
                )
                continue
            if cursor is None or cursor.admits_key(key):
                keyed.append((key, record))

        keyed.sort(key=lambda item: item[0])
        return [record for _, record in keyed[:limit]]

    def _list_stores_sync(self) -> list[str]:
        try:
            return sorted(
                p.name
                for p in self.root.iterdir()
                if p.is_dir()
                and STORE_NAME_PATTERN.match(p.name)
                and any(c.name.endswith(RECORD_SUFFIX) for c in p.iterdir())
            )
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageIOError(f"Cannot list storage root {self.root}: {e}")

    # StorageBackend interface

    async def read(self, store: str, record_id: str) -> Record | None:
        return await self._run(self._read_sync, store, record_id)

    async def write(self, store: str, record: Record) -> None:
        await self._run(self._write_sync, store, record)
        logger.debug(
            "Wrote record file",
            extra={"store": store, "id": record.id, "version": record.version},
        )

    async def scan(self, store: str, cursor: Cursor | None, limit: int) -> list[Record]:
        return await self._run(self._scan_sync, store, cursor, limit)

    async def list_stores(self) -> list[str]:
        return await self._run(self._list_stores_sync)
