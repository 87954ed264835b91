"""
Unit tests for record store types.

Tests cover:
- Store name and record id validation
- Timestamp formatting and parsing
- Record wire format
- Cursor ordering and query parameter parsing
"""

from datetime import datetime, timedelta, timezone

import pytest

from service.syncdb_server.store.errors import InvalidNameError, MalformedInputError
from service.syncdb_server.store.types import (
    Cursor,
    Page,
    Record,
    format_timestamp,
    normalize_record_id,
    parse_timestamp,
    timestamp_ms,
    validate_store_name,
)

T0 = "2024-01-01T00:00:00.000Z"
T0_MS = 1704067200000


class TestStoreNames:
    """Tests for validate_store_name."""

    @pytest.mark.parametrize("name", ["memos", "user_42", "a-b", "ABC", "_health"])
    def test_valid_names(self, name):
        """Letters, digits, underscore and dash are allowed."""
        assert validate_store_name(name) == name

    @pytest.mark.parametrize("name", ["", "a b", "a/b", "..", "memo.json", "café"])
    def test_invalid_names(self, name):
        """Anything else is rejected."""
        with pytest.raises(InvalidNameError) as exc_info:
            validate_store_name(name)
        assert exc_info.value.code == "INVALID_NAME"
        assert exc_info.value.kind == "store"


class TestRecordIds:
    """Tests for normalize_record_id."""

    def test_string_id(self):
        assert normalize_record_id("abc") == "abc"

    def test_integer_id_is_stringified(self):
        """Numeric ids from JSON clients become strings."""
        assert normalize_record_id(42) == "42"

    def test_missing_id(self):
        with pytest.raises(MalformedInputError) as exc_info:
            normalize_record_id(None)
        assert exc_info.value.field_name == "id"

    @pytest.mark.parametrize("value", [True, 1.5, ["a"], {"a": 1}])
    def test_wrong_type(self, value):
        with pytest.raises(MalformedInputError):
            normalize_record_id(value)

    @pytest.mark.parametrize("value", ["", "a/b", "a\\b", "a\x00b"])
    def test_path_characters_rejected(self, value):
        """Ids must never escape the store directory."""
        with pytest.raises(InvalidNameError):
            normalize_record_id(value)


class TestTimestamps:
    """Tests for timestamp helpers."""

    def test_format_millisecond_precision(self):
        """Output matches JavaScript Date.toISOString()."""
        moment = datetime(2024, 3, 5, 7, 8, 9, 123456, tzinfo=timezone.utc)
        assert format_timestamp(moment) == "2024-03-05T07:08:09.123Z"

    def test_format_converts_to_utc(self):
        tz = timezone(timedelta(hours=2))
        moment = datetime(2024, 1, 1, 2, 0, 0, tzinfo=tz)
        assert format_timestamp(moment) == T0

    def test_parse_zulu(self):
        assert parse_timestamp(T0) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_parse_naive_is_utc(self):
        """Timestamps without offset are taken as UTC."""
        assert timestamp_ms("2024-01-01T00:00:00") == T0_MS

    def test_parse_offset(self):
        assert timestamp_ms("2024-01-01T02:00:00.000+02:00") == T0_MS

    def test_parse_invalid(self):
        with pytest.raises(MalformedInputError) as exc_info:
            parse_timestamp("yesterday")
        assert exc_info.value.field_name == "after"

    def test_format_parse_agree(self):
        """Formatted timestamps parse back to the same millisecond."""
        moment = datetime(2024, 6, 1, 12, 30, 0, 999000, tzinfo=timezone.utc)
        assert parse_timestamp(format_timestamp(moment)) == moment


class TestRecord:
    """Tests for Record."""

    def test_to_dict_flattens_fields(self):
        record = Record(id="a", version=2, updated_at=T0, fields={"text": "x"})

        assert record.to_dict() == {
            "id": "a",
            "version": 2,
            "updatedAt": T0,
            "text": "x",
        }

    def test_reserved_fields_win_over_payload(self):
        """Payload keys cannot shadow id/version/updatedAt."""
        record = Record(id="a", version=1, updated_at=T0, fields={"version": 99})
        assert record.to_dict()["version"] == 1

    def test_from_dict_splits_reserved_fields(self):
        record = Record.from_dict({"id": "a", "version": 3, "updatedAt": T0, "n": 1})

        assert record.id == "a"
        assert record.version == 3
        assert record.updated_at == T0
        assert record.fields == {"n": 1}

    def test_from_dict_missing_field(self):
        with pytest.raises(MalformedInputError):
            Record.from_dict({"id": "a", "updatedAt": T0})

    def test_from_dict_bad_version(self):
        with pytest.raises(MalformedInputError):
            Record.from_dict({"id": "a", "version": "2", "updatedAt": T0})

    def test_tombstone(self):
        assert Record(id="a", version=-1, updated_at=T0).is_tombstone
        assert not Record(id="a", version=1, updated_at=T0).is_tombstone

    def test_sort_key(self):
        record = Record(id="b", version=1, updated_at=T0)
        assert record.sort_key == (T0_MS, "b")


class TestCursor:
    """Tests for Cursor."""

    def test_timestamp_only_excludes_same_ms(self):
        """Without an id, records at the cursor timestamp are skipped."""
        cursor = Cursor(after_ms=T0_MS)

        assert not cursor.admits_key((T0_MS, "z"))
        assert cursor.admits_key((T0_MS + 1, "a"))

    def test_with_id_admits_later_ids_at_same_ms(self):
        cursor = Cursor(after_ms=T0_MS, after_id="m")

        assert not cursor.admits_key((T0_MS, "a"))
        assert not cursor.admits_key((T0_MS, "m"))
        assert cursor.admits_key((T0_MS, "n"))
        assert cursor.admits_key((T0_MS + 1, "a"))
        assert not cursor.admits_key((T0_MS - 1, "z"))

    def test_after_record(self):
        record = Record(id="a", version=1, updated_at=T0)
        assert Cursor.after_record(record) == Cursor(after_ms=T0_MS, after_id="a")

    def test_from_params_none(self):
        assert Cursor.from_params(None, None) is None
        assert Cursor.from_params("", None) is None

    def test_from_params_id_without_timestamp(self):
        """after_id alone means start of feed."""
        assert Cursor.from_params(None, "a") is None

    def test_from_params_pair(self):
        assert Cursor.from_params(T0, "a") == Cursor(after_ms=T0_MS, after_id="a")

    def test_from_params_legacy_pair(self):
        """A single 'timestamp,id' value splits at the first comma."""
        cursor = Cursor.from_params(f"{T0},a,b", None)
        assert cursor == Cursor(after_ms=T0_MS, after_id="a,b")

    def test_from_params_timestamp_only(self):
        assert Cursor.from_params(T0, None) == Cursor(after_ms=T0_MS)

    def test_from_params_invalid_timestamp(self):
        with pytest.raises(MalformedInputError):
            Cursor.from_params("not-a-date", "a")


class TestPage:
    """Tests for Page."""

    def test_to_dict(self):
        record = Record(id="a", version=1, updated_at=T0)
        page = Page(records=[record], has_more=True)

        assert page.to_dict() == {"data": [record.to_dict()], "hasMore": True}

    def test_next_cursor(self):
        records = [
            Record(id="a", version=1, updated_at=T0),
            Record(id="b", version=1, updated_at=T0),
        ]
        assert Page(records=records, has_more=False).next_cursor == Cursor(T0_MS, "b")
        assert Page(records=[], has_more=False).next_cursor is None
