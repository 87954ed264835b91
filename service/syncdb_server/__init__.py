"""
SyncDB Server - sync backend for offline-first clients.

This package implements the server side of the SyncedDB protocol:
- A versioned record store, one namespace ("store") per collection
- Optimistic concurrency: every update names the version it creates
- Tombstones, so deletions travel through the change feed
- A change feed ordered by (updatedAt, id) with resumable cursors

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Client    │────▶│    HTTP     │────▶│   RecordStore   │
    │ (SyncedDB)  │     │   Server    │     │ (per-id locks)  │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                                  ┌──────────────────┼──────────────────┐
                                  ▼                  ▼                  ▼
                             ┌─────────┐        ┌─────────┐        ┌─────────┐
                             │ Memory  │        │  Files  │        │ SQLite  │
                             └─────────┘        └─────────┘        └─────────┘

Invariants:
    - updatedAt is assigned by the server, never by clients
    - version is 1 on creation, +1 per update, -1 once deleted
    - A record id is never reused within a store

How to change safely:
    - The REST contract is fixed by deployed clients
    - Storage backends are interchangeable behind StorageBackend

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
