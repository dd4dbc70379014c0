"""
Control database for TierVault.

A small SQLite database that holds the engine's own durable state,
separate from the hot store so it survives hot store maintenance:
- cursor_positions: last persisted change-feed position per consumer
- archival_tasks: the task ledger (state of every archival in flight)
- dead_letters: permanently failed archival attempts

Invariants:
    - All writes go through write_lock, one connection per operation
    - Each table is owned by exactly one component (ChangeCursor,
      TaskLedger, DeadLetterSink); other components never write to it

Table schema:
    cursor_positions:
        - consumer TEXT PRIMARY KEY
        - position TEXT
        - updated_at INTEGER (Unix ms)

    archival_tasks:
        - record_id TEXT
        - partition_key TEXT
        - created_at INTEGER
        - attempt INTEGER
        - state TEXT
        - last_error TEXT
        - updated_at INTEGER
        - PRIMARY KEY (partition_key, record_id)

    dead_letters:
        - record_id TEXT
        - partition_key TEXT
        - created_at INTEGER
        - last_error TEXT
        - error_code TEXT
        - attempt INTEGER
        - first_failed_at INTEGER
        - last_failed_at INTEGER
        - PRIMARY KEY (partition_key, record_id)
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..errors import TransientNetworkError

logger = logging.getLogger(__name__)


class ControlStore:
    """SQLite store for cursor positions, task ledger and dead letters.

    Example:
        >>> control = ControlStore("/var/lib/tiervault/control.db")
        >>> await control.initialize()
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self.write_lock = asyncio.Lock()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = FULL")
            yield conn
        except sqlite3.OperationalError as e:
            if "locked" in str(e) or "busy" in str(e):
                raise TransientNetworkError(f"Control store busy: {e}") from e
            raise
        finally:
            conn.close()

    async def initialize(self) -> None:
        """Create schema if it doesn't exist."""
        async with self.write_lock:
            with self.connection() as conn:
                conn.executescript("""
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INTEGER PRIMARY KEY,
                        applied_at INTEGER NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS cursor_positions (
                        consumer TEXT PRIMARY KEY,
                        position TEXT NOT NULL,
                        updated_at INTEGER NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS archival_tasks (
                        record_id TEXT NOT NULL,
                        partition_key TEXT NOT NULL,
                        created_at INTEGER NOT NULL,
                        attempt INTEGER NOT NULL DEFAULT 0,
                        state TEXT NOT NULL,
                        last_error TEXT,
                        updated_at INTEGER NOT NULL,
                        PRIMARY KEY (partition_key, record_id)
                    );

                    CREATE INDEX IF NOT EXISTS idx_tasks_state_updated
                        ON archival_tasks(state, updated_at);

                    CREATE TABLE IF NOT EXISTS dead_letters (
                        record_id TEXT NOT NULL,
                        partition_key TEXT NOT NULL,
                        created_at INTEGER NOT NULL,
                        last_error TEXT NOT NULL,
                        error_code TEXT NOT NULL,
                        attempt INTEGER NOT NULL,
                        first_failed_at INTEGER NOT NULL,
                        last_failed_at INTEGER NOT NULL,
                        PRIMARY KEY (partition_key, record_id)
                    );

                    CREATE INDEX IF NOT EXISTS idx_dead_letters_first_failed
                        ON dead_letters(first_failed_at);

                    INSERT OR IGNORE INTO schema_version (version, applied_at)
                    VALUES (1, strftime('%s', 'now') * 1000);
                """)
        logger.info("Initialized control store", extra={"db_path": str(self.db_path)})
