"""
Unit tests for the versioned record store.

Tests cover:
- Create / get / update / delete semantics
- Version conflicts and tombstones
- Change-feed paging and exhaustiveness
- Concurrent writers on one record
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from service.syncdb_server.store import (
    AlreadyExistsError,
    FileBackend,
    InvalidNameError,
    MalformedInputError,
    NotFoundError,
    RecordStore,
    VersionConflictError,
    clamp_limit,
)
from service.syncdb_server.store.record_store import coerce_version
from service.syncdb_server.store.types import format_timestamp, parse_timestamp


@pytest.fixture
def store(memory_backend, clock):
    """RecordStore over a connected in-memory backend with a fake clock."""
    return RecordStore(memory_backend, clock=clock)


class TestHelpers:
    """Tests for module-level helpers."""

    @pytest.mark.parametrize(
        "requested,expected",
        [(None, 100), (0, 1), (-5, 1), (1, 1), (250, 250), (1000, 1000), (5000, 1000)],
    )
    def test_clamp_limit(self, requested, expected):
        assert clamp_limit(requested) == expected

    def test_clamp_limit_custom_bounds(self):
        assert clamp_limit(None, default=10, maximum=20) == 10
        assert clamp_limit(50, default=10, maximum=20) == 20

    @pytest.mark.parametrize(
        "value,expected",
        [(2, 2), (2.0, 2), ("3", 3), (" 4 ", 4), (2.5, None), ("x", None), (True, None), (None, None)],
    )
    def test_coerce_version(self, value, expected):
        assert coerce_version(value) == expected


class TestCreate:
    """Tests for RecordStore.create."""

    @pytest.mark.asyncio
    async def test_create_assigns_version_and_timestamp(self, memory_backend):
        store = RecordStore(memory_backend)
        started = datetime.now(timezone.utc).replace(microsecond=0)

        await store.create("memos", {"id": "a", "text": "hello"})
        record = await store.get("memos", "a")

        assert record.version == 1
        assert record.fields == {"text": "hello"}
        assert parse_timestamp(record.updated_at) >= started

    @pytest.mark.asyncio
    async def test_client_version_and_timestamp_ignored(self, store):
        record = await store.create(
            "memos", {"id": "a", "version": 7, "updatedAt": "1999-01-01T00:00:00.000Z"}
        )

        assert record.version == 1
        assert record.updated_at == "2024-01-01T00:00:00.000Z"

    @pytest.mark.asyncio
    async def test_timestamp_follows_clock(self, store, clock):
        moment = datetime(2030, 5, 6, 7, 8, 9, 10000, tzinfo=timezone.utc)
        clock.now = moment

        record = await store.create("memos", {"id": "a"})

        assert record.updated_at == format_timestamp(moment) == "2030-05-06T07:08:09.010Z"

    @pytest.mark.asyncio
    async def test_duplicate_id(self, store):
        await store.create("memos", {"id": "a"})

        with pytest.raises(AlreadyExistsError):
            await store.create("memos", {"id": "a", "text": "again"})

        assert (await store.get("memos", "a")).fields == {}

    @pytest.mark.asyncio
    async def test_tombstoned_id_cannot_be_recreated(self, store):
        await store.create("memos", {"id": "a"})
        await store.delete("memos", "a")

        with pytest.raises(AlreadyExistsError):
            await store.create("memos", {"id": "a"})

    @pytest.mark.asyncio
    async def test_same_id_in_other_store(self, store):
        await store.create("memos", {"id": "a"})
        await store.create("tasks", {"id": "a"})

        assert await store.list_stores() == ["memos", "tasks"]

    @pytest.mark.asyncio
    async def test_numeric_id(self, store):
        record = await store.create("memos", {"id": 5})

        assert record.id == "5"
        assert (await store.get("memos", "5")).id == "5"

    @pytest.mark.asyncio
    async def test_missing_id(self, store, memory_backend):
        with pytest.raises(MalformedInputError):
            await store.create("memos", {"text": "no id"})

        assert memory_backend.record_count("memos") == 0

    @pytest.mark.asyncio
    async def test_invalid_store_name(self, store, memory_backend):
        with pytest.raises(InvalidNameError):
            await store.create("../etc", {"id": "a"})

        assert await memory_backend.list_stores() == []


class TestGet:
    """Tests for RecordStore.get."""

    @pytest.mark.asyncio
    async def test_missing(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            await store.get("memos", "nope")
        assert exc_info.value.code == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_invalid_id(self, store):
        with pytest.raises(InvalidNameError):
            await store.get("memos", "a/b")


class TestUpdate:
    """Tests for RecordStore.update."""

    @pytest.mark.asyncio
    async def test_update_increments_version(self, store):
        await store.create("memos", {"id": "a", "text": "v1"})

        record = await store.update("memos", "a", {"version": 2, "text": "v2"})

        assert record.version == 2
        assert (await store.get("memos", "a")).fields == {"text": "v2"}

    @pytest.mark.asyncio
    async def test_update_replaces_payload(self, store):
        """Fields absent from the update are dropped."""
        await store.create("memos", {"id": "a", "text": "x", "color": "red"})

        await store.update("memos", "a", {"version": 2, "text": "y"})

        assert (await store.get("memos", "a")).fields == {"text": "y"}

    @pytest.mark.asyncio
    async def test_update_refreshes_timestamp(self, store):
        created = await store.create("memos", {"id": "a"})
        updated = await store.update("memos", "a", {"version": 2})

        assert parse_timestamp(updated.updated_at) > parse_timestamp(created.updated_at)

    @pytest.mark.asyncio
    async def test_body_id_is_ignored(self, store):
        await store.create("memos", {"id": "a"})

        await store.update("memos", "a", {"id": "b", "version": 2})

        assert (await store.get("memos", "a")).version == 2
        with pytest.raises(NotFoundError):
            await store.get("memos", "b")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("version", [1, 3, 0, -1, None, "two", 2.5])
    async def test_wrong_version_conflicts(self, store, version):
        """Anything but current + 1 is rejected without mutation."""
        await store.create("memos", {"id": "a", "text": "orig"})
        body = {"text": "changed"}
        if version is not None:
            body["version"] = version

        with pytest.raises(VersionConflictError) as exc_info:
            await store.update("memos", "a", body)

        assert exc_info.value.current.version == 1
        assert exc_info.value.current.fields == {"text": "orig"}
        assert (await store.get("memos", "a")).fields == {"text": "orig"}

    @pytest.mark.asyncio
    async def test_numeric_string_version_accepted(self, store):
        await store.create("memos", {"id": "a"})

        record = await store.update("memos", "a", {"version": "2"})

        assert record.version == 2

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.update("memos", "nope", {"version": 2})

    @pytest.mark.asyncio
    async def test_tombstone_is_terminal(self, store):
        """Updating a deleted record conflicts and returns the tombstone."""
        await store.create("memos", {"id": "a"})
        await store.delete("memos", "a")

        for version in (0, 1, 2):
            with pytest.raises(VersionConflictError) as exc_info:
                await store.update("memos", "a", {"version": version})
            assert exc_info.value.current.is_tombstone


class TestDelete:
    """Tests for RecordStore.delete."""

    @pytest.mark.asyncio
    async def test_delete_leaves_tombstone(self, store):
        await store.create("memos", {"id": "a", "text": "x"})

        tombstone = await store.delete("memos", "a")
        record = await store.get("memos", "a")

        assert tombstone.version == -1
        assert record.version == -1
        assert record.fields == {}

    @pytest.mark.asyncio
    async def test_second_delete_refreshes_timestamp(self, store):
        await store.create("memos", {"id": "a"})
        first = await store.delete("memos", "a")
        second = await store.delete("memos", "a")

        assert second.version == -1
        assert parse_timestamp(second.updated_at) > parse_timestamp(first.updated_at)

    @pytest.mark.asyncio
    async def test_delete_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.delete("memos", "nope")


class TestScenario:
    """End-to-end sync scenario against the store."""

    @pytest.mark.asyncio
    async def test_create_update_conflict_delete(self, store):
        await store.create("memos", {"id": "a"})
        assert (await store.get("memos", "a")).version == 1

        await store.update("memos", "a", {"version": 2, "text": "x"})
        assert (await store.get("memos", "a")).to_dict()["text"] == "x"

        with pytest.raises(VersionConflictError) as exc_info:
            await store.update("memos", "a", {"version": 2, "text": "y"})
        current = exc_info.value.current.to_dict()
        assert current["id"] == "a"
        assert current["version"] == 2
        assert current["text"] == "x"

        await store.delete("memos", "a")
        tombstone = (await store.get("memos", "a")).to_dict()
        assert tombstone["version"] == -1
        assert "text" not in tombstone


class TestList:
    """Tests for RecordStore.list (change feed)."""

    @pytest.mark.asyncio
    async def test_empty_store(self, store):
        page = await store.list("memos")

        assert page.records == []
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_invalid_store_name(self, store):
        with pytest.raises(InvalidNameError):
            await store.list("a b")

    @pytest.mark.asyncio
    async def test_150_records_two_pages(self, store):
        """size=100 gives 100 + hasMore, the cursor of the 100th gives 50."""
        for i in range(150):
            await store.create("memos", {"id": f"r{i:03d}"})

        first = await store.list("memos", limit=100)
        assert len(first.records) == 100
        assert first.has_more is True

        second = await store.list("memos", cursor=first.next_cursor, limit=100)
        assert len(second.records) == 50
        assert second.has_more is False
        assert second.records[0].id == "r100"

    @pytest.mark.asyncio
    async def test_exact_page_has_no_more(self, store):
        for i in range(3):
            await store.create("memos", {"id": f"r{i}"})

        page = await store.list("memos", limit=3)

        assert len(page.records) == 3
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_default_and_max_page_size(self, memory_backend, clock):
        store = RecordStore(memory_backend, clock=clock, default_page_size=2, max_page_size=3)
        for i in range(5):
            await store.create("memos", {"id": f"r{i}"})

        assert len((await store.list("memos")).records) == 2
        assert len((await store.list("memos", limit=50)).records) == 3
        assert len((await store.list("memos", limit=0)).records) == 1

    @pytest.mark.asyncio
    async def test_feed_includes_tombstones_and_moves_updates(self, store):
        for record_id in ("a", "b", "c"):
            await store.create("memos", {"id": record_id})
        await store.update("memos", "a", {"version": 2})
        await store.delete("memos", "b")

        page = await store.list("memos")

        assert [(r.id, r.version) for r in page.records] == [("c", 1), ("a", 2), ("b", -1)]

    @pytest.mark.asyncio
    async def test_paging_with_shared_timestamps_is_exhaustive(self, store, clock):
        """Every record appears exactly once even when timestamps collide."""
        clock.freeze()
        for i in range(7):
            await store.create("memos", {"id": f"same{i}"})
        clock.step = timedelta(milliseconds=1)
        clock.advance(1)
        for i in range(6):
            await store.create("memos", {"id": f"later{i}"})

        seen = []
        cursor = None
        while True:
            page = await store.list("memos", cursor=cursor, limit=3)
            seen.extend(page.records)
            if not page.has_more:
                break
            cursor = page.next_cursor

        ids = [r.id for r in seen]
        assert len(ids) == 13
        assert len(set(ids)) == 13
        keys = [r.sort_key for r in seen]
        assert keys == sorted(keys)

    @pytest.mark.asyncio
    async def test_resume_picks_up_later_changes(self, store):
        """A client resuming from its last cursor sees only newer changes."""
        await store.create("memos", {"id": "a"})
        await store.create("memos", {"id": "b"})
        cursor = (await store.list("memos")).next_cursor

        await store.update("memos", "a", {"version": 2})
        await store.create("memos", {"id": "c"})

        page = await store.list("memos", cursor=cursor)

        assert [(r.id, r.version) for r in page.records] == [("a", 2), ("c", 1)]


class TestConcurrency:
    """Concurrent writers against one record."""

    @pytest.mark.asyncio
    async def test_one_of_many_updates_wins(self, store):
        await store.create("memos", {"id": "a"})

        results = await asyncio.gather(
            *(store.update("memos", "a", {"version": 2, "writer": n}) for n in range(10)),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, VersionConflictError)]
        assert len(winners) == 1
        assert len(losers) == 9
        record = await store.get("memos", "a")
        assert record.version == 2
        assert record.fields == winners[0].fields

    @pytest.mark.asyncio
    async def test_one_of_many_creates_wins(self, data_dir, clock):
        """Holds for the file backend, whose I/O yields to the loop."""
        backend = FileBackend(data_dir)
        await backend.connect()
        store = RecordStore(backend, clock=clock)

        results = await asyncio.gather(
            *(store.create("memos", {"id": "a", "writer": n}) for n in range(5)),
            return_exceptions=True,
        )

        assert sum(not isinstance(r, Exception) for r in results) == 1
        assert sum(isinstance(r, AlreadyExistsError) for r in results) == 4
        await backend.close()

