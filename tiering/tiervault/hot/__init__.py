"""
Hot store abstraction for TierVault.

This module provides a pluggable hot store interface supporting:
- SQLite (single-node production and development)
- In-memory (for testing)

Invariants:
    - get() distinguishes a definitive miss (RecordNotFoundError) from failures
    - delete_if_unchanged() never deletes a record whose version moved on
    - The change feed is ordered and replayable from any persisted position
"""

from .base import (
    START,
    Change,
    ChangeBatch,
    ChangeOp,
    DeleteOutcome,
    FeedPosition,
    HotStore,
)
from .memory import InMemoryHotStore
from .sqlite_store import SqliteHotStore

__all__ = [
    # Protocol and types
    "HotStore",
    "FeedPosition",
    "START",
    "Change",
    "ChangeOp",
    "ChangeBatch",
    "DeleteOutcome",
    # Implementations
    "SqliteHotStore",
    "InMemoryHotStore",
]
