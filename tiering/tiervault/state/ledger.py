"""
Archival task ledger.

Persists the state of every archival task that has not reached a
terminal state, so a crash between write, verify and delete can be
detected and resumed by the reconciliation scan.

Invariants:
    - At most one ledger entry per record identity
    - Every state transition is persisted before the next step starts
    - Terminal tasks (Done / DeadLettered) are removed from the ledger;
      dead-lettered ones live on in the DeadLetterSink
"""

from __future__ import annotations

import logging
import sqlite3

from ..models import ArchivalTask, RecordRef, TaskState, now_ms
from .control_store import ControlStore

logger = logging.getLogger(__name__)


class TaskLedger:
    """Durable record of in-flight archival tasks."""

    def __init__(self, control: ControlStore) -> None:
        self.control = control

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> ArchivalTask:
        return ArchivalTask(
            ref=RecordRef(row["record_id"], row["partition_key"], row["created_at"]),
            attempt=row["attempt"],
            state=TaskState(row["state"]),
            last_error=row["last_error"],
            updated_at=row["updated_at"],
        )

    async def get(self, ref: RecordRef) -> ArchivalTask | None:
        with self.control.connection() as conn:
            row = conn.execute(
                "SELECT * FROM archival_tasks WHERE partition_key = ? AND record_id = ?",
                (ref.partition_key, ref.record_id),
            ).fetchone()
        return self._row_to_task(row) if row else None

    async def claim(self, task: ArchivalTask) -> ArchivalTask:
        """Start a new run of ``task``.

        If the record already has a non-terminal entry, that entry's state
        wins so the run resumes from the last known step. The attempt
        counter is incremented either way.

        Returns:
            The task to execute
        """
        existing = await self.get(task.ref)
        if existing is not None:
            claimed = ArchivalTask(
                ref=existing.ref,
                attempt=existing.attempt + 1,
                state=existing.state,
                last_error=existing.last_error,
            )
        else:
            claimed = ArchivalTask(ref=task.ref, attempt=task.attempt + 1, state=TaskState.PENDING)
        await self.save(claimed)
        return claimed

    async def save(self, task: ArchivalTask) -> None:
        """Persist the task's current state.

        Terminal tasks are removed from the ledger.
        """
        task.updated_at = now_ms()
        async with self.control.write_lock:
            with self.control.connection() as conn:
                if task.is_terminal:
                    conn.execute(
                        "DELETE FROM archival_tasks WHERE partition_key = ? AND record_id = ?",
                        (task.ref.partition_key, task.ref.record_id),
                    )
                    return
                conn.execute(
                    """
                    INSERT INTO archival_tasks
                        (record_id, partition_key, created_at, attempt, state, last_error, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (partition_key, record_id) DO UPDATE SET
                        attempt = excluded.attempt,
                        state = excluded.state,
                        last_error = excluded.last_error,
                        updated_at = excluded.updated_at
                    """,
                    (
                        task.ref.record_id,
                        task.ref.partition_key,
                        task.ref.created_at,
                        task.attempt,
                        task.state.value,
                        task.last_error,
                        task.updated_at,
                    ),
                )

    async def list_stale(self, updated_before_ms: int, limit: int) -> list[ArchivalTask]:
        """Non-terminal tasks whose last update is older than ``updated_before_ms``."""
        with self.control.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM archival_tasks WHERE updated_at < ? "
                "ORDER BY updated_at LIMIT ?",
                (updated_before_ms, limit),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    async def count_by_state(self) -> dict[str, int]:
        with self.control.connection() as conn:
            rows = conn.execute(
                "SELECT state, COUNT(*) AS n FROM archival_tasks GROUP BY state"
            ).fetchall()
        return {row["state"]: row["n"] for row in rows}
