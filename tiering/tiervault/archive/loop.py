"""
Archival loop: change feed -> trigger -> worker pool -> cursor.

One cycle:
    1. cursor.advance() reads the next change batch
    2. trigger.tasks_for() picks the records old enough to archive
    3. pool.run_batch() drives every task to an outcome
    4. cursor.persist() runs only if every task reached a terminal state;
       otherwise the cursor is rewound and the batch is replayed later

A second, slower loop runs the trigger's age sweep over the hot store.

Invariants:
    - The persisted cursor never passes a non-terminal task
    - Batches are processed one at a time; parallelism lives in the pool
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from ..cursor import ChangeCursor
from ..hot.base import FeedPosition
from ..trigger import ArchivalTrigger
from .archiver import ArchivalResult
from .pool import ArchivalWorkerPool

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """Outcome of one archival cycle.

    Attributes:
        changes: Changes read from the feed
        results: Archival results for the emitted tasks
        persisted: Whether the cursor was persisted
        position: Cursor position after the cycle
    """

    changes: int = 0
    results: list[ArchivalResult] = field(default_factory=list)
    persisted: bool = False
    position: FeedPosition | None = None


class ArchivalLoop:
    """Drives archival from the change feed and the age sweep.

    Example:
        >>> loop = ArchivalLoop(cursor, trigger, pool, batch_size=100)
        >>> await loop.start()  # Runs until stopped
    """

    def __init__(
        self,
        cursor: ChangeCursor,
        trigger: ArchivalTrigger,
        pool: ArchivalWorkerPool,
        batch_size: int = 100,
        poll_interval_seconds: float = 5.0,
        sweep_interval_seconds: float = 3600.0,
    ) -> None:
        self.cursor = cursor
        self.trigger = trigger
        self.pool = pool
        self.batch_size = batch_size
        self.poll_interval_seconds = poll_interval_seconds
        self.sweep_interval_seconds = sweep_interval_seconds

        self._running = False
        self._wakeup = asyncio.Event()
        self._cycles = 0
        self._stalled_batches = 0

    async def run_once(self) -> CycleReport:
        """Process one change batch."""
        batch = await self.cursor.advance(self.batch_size)
        report = CycleReport(changes=len(batch), position=batch.position)
        if not batch.changes:
            return report

        tasks = self.trigger.tasks_for(batch)
        report.results = await self.pool.run_batch(tasks)
        self._cycles += 1

        if all(result.is_terminal for result in report.results):
            await self.cursor.persist(batch.position)
            report.persisted = True
        else:
            self._stalled_batches += 1
            self.cursor.rewind()
            report.position = self.cursor.current_position()
            logger.warning(
                "Batch not fully archived; cursor not persisted",
                extra={
                    "position": str(batch.position),
                    "non_terminal": sum(1 for r in report.results if not r.is_terminal),
                },
            )
        return report

    async def sweep_once(self) -> list[ArchivalResult]:
        """Archive hot records that aged past the threshold without a change."""
        tasks = await self.trigger.sweep(limit=self.batch_size * 10)
        return await self.pool.run_batch(tasks)

    async def start(self) -> None:
        """Start the change-feed loop."""
        if self._running:
            logger.warning("Archival loop already running")
            return

        self._running = True
        await self.cursor.load()
        logger.info(
            "Starting archival loop",
            extra={"consumer": self.cursor.consumer, "batch_size": self.batch_size},
        )

        try:
            while self._running:
                try:
                    report = await self.run_once()
                except Exception as e:
                    logger.error(f"Archival cycle error: {e}", exc_info=True)
                    self.cursor.rewind()
                    report = CycleReport()

                if self._running and (report.changes == 0 or not report.persisted):
                    await self._sleep(self.poll_interval_seconds)
        except asyncio.CancelledError:
            logger.info("Archival loop cancelled")
        finally:
            self._running = False

    async def start_sweep(self) -> None:
        """Start the periodic age sweep."""
        while not self._wakeup.is_set():
            await self._sleep(self.sweep_interval_seconds)
            if self._wakeup.is_set():
                break
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Age sweep error: {e}", exc_info=True)

    async def stop(self) -> None:
        """Stop taking new batches; in-flight steps finish."""
        self._running = False
        self.pool.stop()
        self._wakeup.set()
        logger.info("Stopping archival loop")

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    @property
    def stats(self) -> dict[str, object]:
        return {
            "running": self._running,
            "cycles": self._cycles,
            "stalled_batches": self._stalled_batches,
            "cursor_position": str(self.cursor.persisted_position),
            "in_flight": self.pool.in_flight,
        }
