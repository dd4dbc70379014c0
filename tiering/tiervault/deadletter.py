"""
Dead-letter sink for permanently failed archival tasks.

Entries are created by the Archiver when a task hits a fatal error or
exhausts its retries, and removed only by administrative reprocessing
(see tools/deadletter_cli.py). The hot copy of a dead-lettered record is
never touched, so it stays readable.

Invariants:
    - One entry per record identity; re-enqueue updates, never duplicates
    - attempt grows on every re-enqueue, even when the ledger restarted the count
    - first_failed_at is set once and preserved across re-enqueues
    - drain_for_reprocessing() does not remove entries; remove() does
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable

from .errors import error_code
from .models import ArchivalTask, DeadLetterEntry, RecordRef, now_ms
from .state.control_store import ControlStore

logger = logging.getLogger(__name__)


class DeadLetterSink:
    """SQLite-backed dead-letter store.

    Example:
        >>> sink = DeadLetterSink(control)
        >>> await sink.enqueue(task, error)
        >>> for entry in await sink.list():
        ...     print(entry.ref, entry.error_code)
    """

    def __init__(self, control: ControlStore) -> None:
        self.control = control

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> DeadLetterEntry:
        return DeadLetterEntry(
            ref=RecordRef(row["record_id"], row["partition_key"], row["created_at"]),
            last_error=row["last_error"],
            error_code=row["error_code"],
            attempt=row["attempt"],
            first_failed_at=row["first_failed_at"],
            last_failed_at=row["last_failed_at"],
        )

    async def enqueue(self, task: ArchivalTask, error: BaseException) -> DeadLetterEntry:
        """Record a permanently failed task (idempotent per record)."""
        ts = now_ms()
        code = error_code(error)
        async with self.control.write_lock:
            with self.control.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO dead_letters
                        (record_id, partition_key, created_at, last_error, error_code,
                         attempt, first_failed_at, last_failed_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (partition_key, record_id) DO UPDATE SET
                        last_error = excluded.last_error,
                        error_code = excluded.error_code,
                        attempt = MAX(dead_letters.attempt + 1, excluded.attempt),
                        last_failed_at = excluded.last_failed_at
                    """,
                    (
                        task.ref.record_id,
                        task.ref.partition_key,
                        task.ref.created_at,
                        str(error),
                        code,
                        task.attempt,
                        ts,
                        ts,
                    ),
                )
                row = conn.execute(
                    "SELECT * FROM dead_letters WHERE partition_key = ? AND record_id = ?",
                    (task.ref.partition_key, task.ref.record_id),
                ).fetchone()

        entry = self._row_to_entry(row)
        logger.warning(
            "Archival task dead-lettered",
            extra={
                "record_id": task.ref.record_id,
                "partition_key": task.ref.partition_key,
                "error_code": code,
                "attempt": entry.attempt,
            },
        )
        return entry

    async def get(self, ref: RecordRef) -> DeadLetterEntry | None:
        with self.control.connection() as conn:
            row = conn.execute(
                "SELECT * FROM dead_letters WHERE partition_key = ? AND record_id = ?",
                (ref.partition_key, ref.record_id),
            ).fetchone()
        return self._row_to_entry(row) if row else None

    async def find(
        self, record_id: str, partition_key: str | None = None
    ) -> DeadLetterEntry | None:
        """Look up an entry by id; partition_key defaults to the id."""
        with self.control.connection() as conn:
            row = conn.execute(
                "SELECT * FROM dead_letters WHERE partition_key = ? AND record_id = ?",
                (partition_key or record_id, record_id),
            ).fetchone()
        return self._row_to_entry(row) if row else None

    async def dead_lettered(self, refs: Iterable[RecordRef]) -> set[tuple[str, str]]:
        """Identities among ``refs`` that currently have an entry."""
        found: set[tuple[str, str]] = set()
        with self.control.connection() as conn:
            for ref in refs:
                row = conn.execute(
                    "SELECT 1 FROM dead_letters WHERE partition_key = ? AND record_id = ?",
                    (ref.partition_key, ref.record_id),
                ).fetchone()
                if row:
                    found.add(ref.identity)
        return found

    async def list(self, limit: int = 1000) -> list[DeadLetterEntry]:
        """Entries ordered by first failure, oldest first."""
        with self.control.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM dead_letters ORDER BY first_failed_at, record_id LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    async def remove(self, record_id: str, partition_key: str | None = None) -> bool:
        """Remove an entry after successful reprocessing.

        Returns:
            True if an entry was removed
        """
        async with self.control.write_lock:
            with self.control.connection() as conn:
                cursor = conn.execute(
                    "DELETE FROM dead_letters WHERE partition_key = ? AND record_id = ?",
                    (partition_key or record_id, record_id),
                )
        removed = cursor.rowcount > 0
        if removed:
            logger.info(
                "Dead letter removed",
                extra={"record_id": record_id, "partition_key": partition_key or record_id},
            )
        return removed

    async def drain_for_reprocessing(self, limit: int = 100) -> list[DeadLetterEntry]:
        """Oldest entries handed to an operator for reprocessing."""
        return await self.list(limit=limit)

    async def count(self) -> int:
        with self.control.connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM dead_letters").fetchone()[0]
