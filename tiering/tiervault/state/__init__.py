"""
Durable engine state for TierVault.

This module handles:
- The control SQLite database
- The archival task ledger used for crash recovery

Cursor positions and dead letters also live in the control database;
they are owned by cursor.ChangeCursor and deadletter.DeadLetterSink.
"""

from .control_store import ControlStore
from .ledger import TaskLedger

__all__ = ["ControlStore", "TaskLedger"]
