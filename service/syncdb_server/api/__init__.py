"""
API module for SyncDB server.

This module provides the external interface:
- HTTP server (REST contract used by SyncedDB clients)

Invariants:
    - Handlers only translate HTTP to RecordStore calls
    - Store names are validated before storage access

How to change safely:
    - Keep status codes and body shapes stable; clients depend on them
    - Add new endpoints without shadowing /{store} routes
"""

from .http_server import create_http_app

__all__ = [
    "create_http_app",
]
