"""
Shared fixtures for the SyncDB test suite.

- clock: controllable clock for RecordStore (updatedAt values)
- memory_backend: connected InMemoryBackend
- data_dir: temporary storage root for the disk backends
"""

import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from service.syncdb_server.store import InMemoryBackend


class FakeClock:
    """Clock that advances by `step` on every call."""

    def __init__(self, start: datetime | None = None, step_ms: int = 1) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.step = timedelta(milliseconds=step_ms)

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + self.step
        return current

    def freeze(self) -> None:
        """Return the same instant on every call from now on."""
        self.step = timedelta(0)

    def advance(self, ms: int) -> None:
        self.now += timedelta(milliseconds=ms)


@pytest.fixture
def clock():
    """Clock starting at 2024-01-01T00:00:00.000Z, +1ms per call."""
    return FakeClock()


@pytest.fixture
async def memory_backend():
    """Connected in-memory backend."""
    backend = InMemoryBackend()
    await backend.connect()
    yield backend
    await backend.close()


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir
