"""
Bounded worker pool that drives archival tasks to completion.

Concurrency model:
    - max_workers coroutines each take one task at a time from a queue
    - a shared semaphore (max_inflight_hot_ops) caps concurrent hot-store
      calls across all workers; this is the backpressure against hot-store
      throttling, independent of batch size
    - no lock is held across write-verify-delete; safety comes from the
      protocol's ordering and idempotency

Shutdown:
    stop() lets every in-flight task finish its current step. Tasks still
    queued are not started and come back as INTERRUPTED (non-terminal), so
    the caller does not persist the cursor past them.
"""

from __future__ import annotations

import asyncio
import logging

from ..models import ArchivalTask
from .archiver import ArchivalOutcome, ArchivalResult, Archiver

logger = logging.getLogger(__name__)


class ArchivalWorkerPool:
    """Runs batches of archival tasks with bounded concurrency.

    Example:
        >>> pool = ArchivalWorkerPool(archiver, max_workers=8)
        >>> results = await pool.run_batch(tasks)
        >>> all(r.is_terminal for r in results)
    """

    def __init__(self, archiver: Archiver, max_workers: int = 8) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.archiver = archiver
        self.max_workers = max_workers
        self._stopping = False
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def stop(self) -> None:
        """Stop taking new tasks; in-flight tasks finish their current step."""
        if not self._stopping:
            logger.info("Stopping archival worker pool", extra={"in_flight": self._in_flight})
        self._stopping = True
        self.archiver.request_stop()

    async def run_batch(self, tasks: list[ArchivalTask]) -> list[ArchivalResult]:
        """Drive ``tasks`` through the archiver.

        Duplicate identities in ``tasks`` are collapsed to one run.

        Returns:
            One result per distinct task, in input order
        """
        unique: dict[tuple[str, str], ArchivalTask] = {}
        for task in tasks:
            unique.setdefault(task.ref.identity, task)
        ordered = list(unique.values())
        if not ordered:
            return []

        queue: asyncio.Queue[tuple[int, ArchivalTask]] = asyncio.Queue()
        for index, task in enumerate(ordered):
            queue.put_nowait((index, task))

        results: list[ArchivalResult | None] = [None] * len(ordered)
        worker_count = min(self.max_workers, len(ordered))
        workers = [
            asyncio.create_task(self._worker(queue, results), name=f"archival-worker-{i}")
            for i in range(worker_count)
        ]
        await asyncio.gather(*workers)

        final: list[ArchivalResult] = []
        for index, result in enumerate(results):
            if result is None:
                result = ArchivalResult(task=ordered[index], outcome=ArchivalOutcome.INTERRUPTED)
            final.append(result)
        return final

    async def _worker(
        self,
        queue: asyncio.Queue[tuple[int, ArchivalTask]],
        results: list[ArchivalResult | None],
    ) -> None:
        while not self._stopping:
            try:
                index, task = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            self._in_flight += 1
            try:
                results[index] = await self.archiver.archive(task)
            except Exception as e:
                logger.error(
                    f"Unexpected archival error: {e}",
                    exc_info=True,
                    extra={"record_id": task.ref.record_id},
                )
                results[index] = ArchivalResult(
                    task=task, outcome=ArchivalOutcome.DEFERRED, error=str(e)
                )
            finally:
                self._in_flight -= 1
                queue.task_done()
