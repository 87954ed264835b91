"""
SQLite storage backend.

This module keeps one SQLite database per store, an embedded alternative
to the file-per-record layout with an index that serves the change feed
without reading the whole store.

Invariants:
    - One SQLite file per store, created on first write
    - Every write runs in its own IMMEDIATE transaction
    - idx_records_feed orders rows exactly like the change feed

How to change safely:
    - Schema migrations must be backward compatible
    - Record ids use the default BINARY collation; UTF-8 byte order
      equals the code point order used by the other backends

Table schema:
    records:
        - record_id TEXT PRIMARY KEY
        - version INTEGER
        - updated_at TEXT (ISO-8601, ms)
        - updated_at_ms INTEGER (Unix ms, feed ordering)
        - body_json TEXT (full record as JSON)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .errors import MalformedInputError, StorageIOError
from .types import Cursor, Record

logger = logging.getLogger(__name__)

DB_PREFIX = "store_"
DB_SUFFIX = ".db"


class SqliteBackend:
    """StorageBackend keeping each store in its own SQLite database.

    Thread safety:
        A connection is opened per operation. SQLite serializes writers
        and, in WAL mode, lets readers proceed during writes.

    Example:
        >>> backend = SqliteBackend("/var/lib/syncdb")
        >>> await backend.connect()
        >>> await backend.write("memos", record)
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        storage_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the SQLite backend.

        Args:
            storage_path: Directory for SQLite database files
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.data_dir = Path(storage_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._initialized: set[str] = set()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def get_db_path(self, store: str) -> Path:
        """Database file path for a store."""
        return self.data_dir / f"{DB_PREFIX}{store}{DB_SUFFIX}"

    @contextmanager
    def _get_connection(self, store: str) -> Iterator[sqlite3.Connection]:
        """Open a configured connection to a store database."""
        conn = sqlite3.connect(
            str(self.get_db_path(store)),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS records (
                record_id TEXT PRIMARY KEY,
                version INTEGER NOT NULL,
                updated_at TEXT NOT NULL,
                updated_at_ms INTEGER NOT NULL,
                body_json TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_records_feed
                ON records(updated_at_ms, record_id);

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    def _decode(self, row: sqlite3.Row, store: str) -> Record:
        try:
            data = json.loads(row["body_json"])
            return Record.from_dict(data)
        except (json.JSONDecodeError, TypeError, MalformedInputError) as e:
            raise StorageIOError(
                f"Stored record {row['record_id']!r} is invalid: {e}", store=store
            )

    async def connect(self) -> None:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"Cannot create storage root {self.data_dir}: {e}")
        self._connected = True
        logger.info(f"SqliteBackend ready at {self.data_dir}")

    async def close(self) -> None:
        self._initialized.clear()
        self._connected = False

    async def read(self, store: str, record_id: str) -> Record | None:
        if not self.get_db_path(store).exists():
            return None
        try:
            with self._get_connection(store) as conn:
                self._ensure_schema(conn, store)
                row = conn.execute(
                    "SELECT record_id, body_json FROM records WHERE record_id = ?",
                    (record_id,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageIOError(f"Cannot read record {record_id!r}: {e}", store=store)
        return self._decode(row, store) if row else None

    async def write(self, store: str, record: Record) -> None:
        try:
            body = json.dumps(record.to_dict(), separators=(",", ":"))
            updated_at_ms = record.updated_at_ms
        except (TypeError, ValueError) as e:
            raise StorageIOError(f"Cannot serialize record {record.id!r}: {e}", store=store)

        try:
            with self._get_connection(store) as conn:
                self._ensure_schema(conn, store)
                conn.execute("BEGIN IMMEDIATE")
                try:
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO records
                            (record_id, version, updated_at, updated_at_ms, body_json)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (record.id, record.version, record.updated_at, updated_at_ms, body),
                    )
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
        except sqlite3.Error as e:
            raise StorageIOError(f"Cannot write record {record.id!r}: {e}", store=store)

        logger.debug(
            "Wrote record row",
            extra={"store": store, "id": record.id, "version": record.version},
        )

    def _scan_batch(
        self,
        conn: sqlite3.Connection,
        position: Cursor | None,
        limit: int,
    ) -> list[sqlite3.Row]:
        if position is None:
            where, params = "", ()
        elif position.after_id is None:
            where, params = "WHERE updated_at_ms > ?", (position.after_ms,)
        else:
            where = "WHERE updated_at_ms > ? OR (updated_at_ms = ? AND record_id > ?)"
            params = (position.after_ms, position.after_ms, position.after_id)

        return conn.execute(
            f"""
            SELECT record_id, updated_at_ms, body_json FROM records
            {where}
            ORDER BY updated_at_ms, record_id
            LIMIT ?
            """,
            (*params, limit),
        ).fetchall()

    async def scan(self, store: str, cursor: Cursor | None, limit: int) -> list[Record]:
        """Collect up to `limit` decodable records after `cursor`.

        Undecodable rows are skipped and the scan continues past them, so
        a broken row never shortens the result while valid rows remain.
        """
        if not self.get_db_path(store).exists():
            return []

        records: list[Record] = []
        position = cursor
        try:
            with self._get_connection(store) as conn:
                self._ensure_schema(conn, store)
                while len(records) < limit:
                    wanted = limit - len(records)
                    rows = self._scan_batch(conn, position, wanted)
                    for row in rows:
                        try:
                            records.append(self._decode(row, store))
                        except StorageIOError as e:
                            logger.warning(
                                "Skipping undecodable record row",
                                extra={"store": store, "id": row["record_id"], "error": e.message},
                            )
                    if len(rows) < wanted:
                        break
                    last = rows[-1]
                    position = Cursor(after_ms=last["updated_at_ms"], after_id=last["record_id"])
        except sqlite3.Error as e:
            raise StorageIOError(f"Cannot scan store: {e}", store=store)

        return records

    async def list_stores(self) -> list[str]:
        if not self.data_dir.exists():
            return []
        return sorted(
            p.name[len(DB_PREFIX) : -len(DB_SUFFIX)]
            for p in self.data_dir.glob(f"{DB_PREFIX}*{DB_SUFFIX}")
        )

    def _ensure_schema(self, conn: sqlite3.Connection, store: str) -> None:
        if store in self._initialized:
            return
        self._create_schema(conn)
        self._initialized.add(store)
        logger.info(f"Initialized store database: {store}")
