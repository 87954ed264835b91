"""
Core types for the versioned record store.

This module defines the record model, the change-feed cursor and page,
plus the name and timestamp helpers shared by every backend.

Invariants:
    - Record.id is a non-empty string without path separators
    - Record.version is 1 on creation, +1 per update, -1 for tombstones
    - Record.updated_at is an ISO-8601 UTC string with millisecond precision
    - Ordering key of the change feed is (updated_at_ms, id)

How to change safely:
    - The wire format of a record is a flat JSON object; keep to_dict()
      and from_dict() symmetric
    - Never change the timestamp format without migrating stored records
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from .errors import InvalidNameError, MalformedInputError

TOMBSTONE_VERSION = -1
INITIAL_VERSION = 1

ID_FIELD = "id"
VERSION_FIELD = "version"
UPDATED_AT_FIELD = "updatedAt"
RESERVED_FIELDS = frozenset({ID_FIELD, VERSION_FIELD, UPDATED_AT_FIELD})

STORE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MILLISECOND = timedelta(milliseconds=1)


def validate_store_name(name: str) -> str:
    """Check a store name against the allowed character set.

    Args:
        name: Store name taken from the request path

    Returns:
        The unchanged name

    Raises:
        InvalidNameError: If the name is empty or has other characters
    """
    if not isinstance(name, str) or not STORE_NAME_PATTERN.match(name):
        raise InvalidNameError(f"Invalid store name: {name!r}", kind="store", name=name)
    return name


def normalize_record_id(value: Any) -> str:
    """Coerce a client supplied id to its string form and validate it.

    Integer ids are accepted because JSON clients often use numeric keys.

    Raises:
        MalformedInputError: If the id is missing or not a string/integer
        InvalidNameError: If the id is empty or contains a path separator
    """
    if value is None:
        raise MalformedInputError("Record is missing 'id'", field_name=ID_FIELD)
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise MalformedInputError("Record 'id' must be a string or integer", field_name=ID_FIELD)

    record_id = str(value)
    if not record_id or any(c in record_id for c in ("/", "\\", "\x00")):
        raise InvalidNameError(f"Invalid record id: {record_id!r}", kind="id", name=record_id)
    return record_id


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision.

    Matches the format of JavaScript's Date.toISOString(), which is what
    browser clients send back as a cursor.
    """
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive timestamps are taken as UTC.

    Raises:
        MalformedInputError: If the value is not a valid timestamp
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        raise MalformedInputError(f"Invalid timestamp: {value!r}", field_name="after")

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def to_epoch_ms(moment: datetime) -> int:
    """Milliseconds since the Unix epoch, truncated."""
    return (moment - _EPOCH) // _MILLISECOND


def timestamp_ms(value: str) -> int:
    """Epoch milliseconds of an ISO-8601 timestamp string."""
    return to_epoch_ms(parse_timestamp(value))


def utc_now() -> datetime:
    """Current server time (default clock of the record store)."""
    return datetime.now(timezone.utc)


@dataclass
class Record:
    """A stored record.

    Attributes:
        id: Client assigned identifier, unique within its store
        version: Current version, or TOMBSTONE_VERSION when deleted
        updated_at: Server assigned modification time (ISO-8601, ms)
        fields: Caller supplied payload, carried through unchanged
    """

    id: str
    version: int
    updated_at: str
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def is_tombstone(self) -> bool:
        return self.version == TOMBSTONE_VERSION

    @property
    def updated_at_ms(self) -> int:
        return timestamp_ms(self.updated_at)

    @property
    def sort_key(self) -> tuple[int, str]:
        """Position of this record in the change feed."""
        return (self.updated_at_ms, self.id)

    def to_dict(self) -> dict[str, Any]:
        """Flatten to the wire format: payload plus id/version/updatedAt."""
        data = dict(self.fields)
        data[ID_FIELD] = self.id
        data[VERSION_FIELD] = self.version
        data[UPDATED_AT_FIELD] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Record:
        """Create from the wire format.

        Raises:
            MalformedInputError: If a reserved field is missing or mistyped
        """
        try:
            record_id = str(data[ID_FIELD])
            version = data[VERSION_FIELD]
            updated_at = data[UPDATED_AT_FIELD]
        except KeyError as e:
            raise MalformedInputError(f"Stored record is missing {e.args[0]!r}")
        if isinstance(version, bool) or not isinstance(version, int):
            raise MalformedInputError("Stored record has a non-integer version")
        if not isinstance(updated_at, str):
            raise MalformedInputError("Stored record has a non-string updatedAt")

        fields = {k: v for k, v in data.items() if k not in RESERVED_FIELDS}
        return cls(id=record_id, version=version, updated_at=updated_at, fields=fields)


@dataclass(frozen=True)
class Cursor:
    """Position in the change feed.

    A record follows the cursor if its timestamp is later than
    after_ms, or equal to it with a greater id when after_id is set.

    Attributes:
        after_ms: Timestamp of the last seen record (epoch ms)
        after_id: Id of the last seen record, or None for timestamp-only
    """

    after_ms: int
    after_id: str | None = None

    def admits(self, record: Record) -> bool:
        """Whether the record lies strictly after this cursor."""
        return self.admits_key(record.sort_key)

    def admits_key(self, key: tuple[int, str]) -> bool:
        ts, record_id = key
        if ts > self.after_ms:
            return True
        return self.after_id is not None and ts == self.after_ms and record_id > self.after_id

    @classmethod
    def after_record(cls, record: Record) -> Cursor:
        """Cursor positioned on a record, so paging resumes right after it."""
        return cls(after_ms=record.updated_at_ms, after_id=record.id)

    @classmethod
    def from_params(cls, after: str | None, after_id: str | None) -> Cursor | None:
        """Build a cursor from the `after` / `after_id` query parameters.

        `after` alone may carry a legacy "timestamp,id" pair. An `after_id`
        without `after` does not position the feed, so the result is None.

        Raises:
            MalformedInputError: If the timestamp cannot be parsed
        """
        if not after:
            return None

        if after_id:
            return cls(after_ms=timestamp_ms(after), after_id=after_id)

        if "," in after:
            ts, legacy_id = after.split(",", 1)
            return cls(after_ms=timestamp_ms(ts), after_id=legacy_id or None)

        return cls(after_ms=timestamp_ms(after))


@dataclass
class Page:
    """One page of the change feed.

    Attributes:
        records: Records in (updated_at, id) order
        has_more: Whether more records follow this page
    """

    records: list[Record]
    has_more: bool

    @property
    def next_cursor(self) -> Cursor | None:
        """Cursor of the last record on the page, None for an empty page."""
        if not self.records:
            return None
        return Cursor.after_record(self.records[-1])

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": [r.to_dict() for r in self.records],
            "hasMore": self.has_more,
        }
