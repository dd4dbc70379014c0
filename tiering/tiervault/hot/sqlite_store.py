"""
SQLite hot store for TierVault.

This module manages the transactional store that holds recent records
plus an append-only change log used as the archival change feed.

Invariants:
    - Record writes and their change-log entry commit in one transaction
    - version is bumped on every put; created_at and content_hash never change
    - Conditional delete compares version inside the same statement
    - "database is locked" is reported as a transient (retryable) error

Table schema:
    records:
        - record_id TEXT
        - partition_key TEXT
        - created_at INTEGER (Unix ms)
        - payload BLOB
        - content_hash TEXT
        - version INTEGER
        - updated_at INTEGER (Unix ms)
        - PRIMARY KEY (partition_key, record_id)

    changes:
        - seq INTEGER PRIMARY KEY AUTOINCREMENT
        - record_id TEXT
        - partition_key TEXT
        - created_at INTEGER
        - op TEXT ('upsert' | 'delete')
        - version INTEGER
        - ts INTEGER (Unix ms)
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..errors import MalformedPayloadError, RecordNotFoundError, TransientNetworkError
from ..models import Record, RecordRef, now_ms
from .base import Change, ChangeBatch, ChangeOp, DeleteOutcome, FeedPosition

logger = logging.getLogger(__name__)


class SqliteHotStore:
    """SQLite-backed hot store with a change log.

    Thread safety:
        Each operation opens its own connection; writes are serialized
        with an asyncio lock. SQLite handles concurrent readers via WAL mode.

    Example:
        >>> store = SqliteHotStore("/var/lib/tiervault")
        >>> await store.initialize()
        >>> stored = await store.put(Record.create("inv-1", b"..."))
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_name: str = "hot.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the hot store.

        Args:
            data_dir: Directory for the SQLite database file
            db_name: Database file name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(data_dir) / db_name
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection, translating lock contention."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        except sqlite3.OperationalError as e:
            if "locked" in str(e) or "busy" in str(e):
                raise TransientNetworkError(f"Hot store busy: {e}") from e
            raise
        finally:
            conn.close()

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        async with self._lock:
            with self._get_connection() as conn:
                conn.executescript("""
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INTEGER PRIMARY KEY,
                        applied_at INTEGER NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS records (
                        record_id TEXT NOT NULL,
                        partition_key TEXT NOT NULL,
                        created_at INTEGER NOT NULL,
                        payload BLOB NOT NULL,
                        content_hash TEXT NOT NULL,
                        version INTEGER NOT NULL,
                        updated_at INTEGER NOT NULL,
                        PRIMARY KEY (partition_key, record_id)
                    );

                    CREATE INDEX IF NOT EXISTS idx_records_created
                        ON records(created_at);

                    CREATE TABLE IF NOT EXISTS changes (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        record_id TEXT NOT NULL,
                        partition_key TEXT NOT NULL,
                        created_at INTEGER NOT NULL,
                        op TEXT NOT NULL,
                        version INTEGER NOT NULL,
                        ts INTEGER NOT NULL
                    );

                    INSERT OR IGNORE INTO schema_version (version, applied_at)
                    VALUES (1, strftime('%s', 'now') * 1000);
                """)
        logger.info("Initialized hot store", extra={"db_path": str(self.db_path)})

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> Record:
        return Record(
            record_id=row["record_id"],
            partition_key=row["partition_key"],
            created_at=row["created_at"],
            payload=bytes(row["payload"]),
            content_hash=row["content_hash"],
            version=row["version"],
        )

    async def get(self, record_id: str, partition_key: str) -> Record:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM records WHERE partition_key = ? AND record_id = ?",
                (partition_key, record_id),
            ).fetchone()
        if row is None:
            raise RecordNotFoundError(
                f"Record not found in hot store: {partition_key}/{record_id}",
                key=record_id,
            )
        return self._row_to_record(row)

    async def put(self, record: Record) -> Record:
        """Create or replace a record.

        Raises:
            MalformedPayloadError: If the put would change created_at or content_hash
        """
        record.verify_hash()
        ts = now_ms()
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    existing = conn.execute(
                        "SELECT created_at, content_hash, version FROM records "
                        "WHERE partition_key = ? AND record_id = ?",
                        (record.partition_key, record.record_id),
                    ).fetchone()

                    if existing is None:
                        version = 1
                        conn.execute(
                            "INSERT INTO records (record_id, partition_key, created_at, "
                            "payload, content_hash, version, updated_at) "
                            "VALUES (?, ?, ?, ?, ?, ?, ?)",
                            (
                                record.record_id,
                                record.partition_key,
                                record.created_at,
                                record.payload,
                                record.content_hash,
                                version,
                                ts,
                            ),
                        )
                    else:
                        if (
                            existing["created_at"] != record.created_at
                            or existing["content_hash"] != record.content_hash
                        ):
                            raise MalformedPayloadError(
                                "created_at and content_hash are immutable",
                                record_id=record.record_id,
                            )
                        version = existing["version"] + 1
                        conn.execute(
                            "UPDATE records SET version = ?, updated_at = ? "
                            "WHERE partition_key = ? AND record_id = ?",
                            (version, ts, record.partition_key, record.record_id),
                        )

                    self._append_change(conn, record.ref, ChangeOp.UPSERT, version, ts)
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

        return Record(
            record_id=record.record_id,
            partition_key=record.partition_key,
            created_at=record.created_at,
            payload=record.payload,
            content_hash=record.content_hash,
            version=version,
        )

    async def delete_if_unchanged(
        self, record_id: str, partition_key: str, version: int
    ) -> DeleteOutcome:
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    row = conn.execute(
                        "SELECT created_at, version FROM records "
                        "WHERE partition_key = ? AND record_id = ?",
                        (partition_key, record_id),
                    ).fetchone()
                    if row is None:
                        conn.execute("ROLLBACK")
                        return DeleteOutcome.NOT_FOUND
                    if row["version"] != version:
                        conn.execute("ROLLBACK")
                        return DeleteOutcome.VERSION_MISMATCH

                    conn.execute(
                        "DELETE FROM records "
                        "WHERE partition_key = ? AND record_id = ? AND version = ?",
                        (partition_key, record_id, version),
                    )
                    ref = RecordRef(record_id, partition_key, row["created_at"])
                    self._append_change(conn, ref, ChangeOp.DELETE, version, now_ms())
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
        return DeleteOutcome.OK

    async def changes_since(self, position: FeedPosition, limit: int) -> ChangeBatch:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM changes WHERE seq > ? ORDER BY seq LIMIT ?",
                (position.sequence, limit),
            ).fetchall()

        changes = [
            Change(
                position=FeedPosition(row["seq"]),
                ref=RecordRef(row["record_id"], row["partition_key"], row["created_at"]),
                op=ChangeOp(row["op"]),
                version=row["version"],
            )
            for row in rows
        ]
        next_position = changes[-1].position if changes else position
        return ChangeBatch(changes=changes, position=next_position)

    async def list_created_before(
        self, cutoff_ms: int, limit: int, after: RecordRef | None = None
    ) -> list[RecordRef]:
        # Order must match RecordRef.age_order
        query = "SELECT record_id, partition_key, created_at FROM records WHERE created_at < ?"
        params: list[object] = [cutoff_ms]
        if after is not None:
            query += " AND (created_at, record_id, partition_key) > (?, ?, ?)"
            params.extend(after.age_order)
        query += " ORDER BY created_at, record_id, partition_key LIMIT ?"
        params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [RecordRef(r["record_id"], r["partition_key"], r["created_at"]) for r in rows]

    async def count(self) -> int:
        """Number of records currently held."""
        with self._get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM records").fetchone()[0]

    @staticmethod
    def _append_change(
        conn: sqlite3.Connection,
        ref: RecordRef,
        op: ChangeOp,
        version: int,
        ts: int,
    ) -> None:
        conn.execute(
            "INSERT INTO changes (record_id, partition_key, created_at, op, version, ts) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (ref.record_id, ref.partition_key, ref.created_at, op.value, version, ts),
        )
