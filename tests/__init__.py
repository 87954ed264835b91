"""
SyncDB Test Suite.

This package contains:
- unit/: Unit tests (types, locks, backends, record store, config, startup)
- integration/: Integration tests (HTTP server and SDK client over a live test server)
"""
