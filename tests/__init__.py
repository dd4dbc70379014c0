"""
TierVault Test Suite.

This package contains:
- unit/: Unit tests (in-memory stores, temporary SQLite files)
- integration/: Integration tests (full archival cycle, read API scenarios)
"""
