"""
Reconciliation scan: heals archivals left half-done by a crash or outage.

Any ledger task that is not terminal and has not been touched for
``staleness`` is re-driven through Archiver.resume(), which picks up from
the task's last persisted step. No new primitives are involved: a task
stuck in DELETING re-verifies its cold copy and retries the conditional
delete; a task stuck in WRITING re-runs the idempotent write.

Invariants:
    - Only stale tasks are touched, so live workers are never raced
      within the staleness window
    - One failing task never stops the sweep
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .archive.archiver import ArchivalOutcome, Archiver
from .models import now_ms
from .state.ledger import TaskLedger

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    """Summary of one sweep.

    Attributes:
        scanned: Stale tasks found
        healed: Tasks driven to DONE
        dead_lettered: Tasks moved to the dead-letter sink
        pending: Tasks still non-terminal after the sweep
    """

    scanned: int = 0
    healed: int = 0
    dead_lettered: int = 0
    pending: int = 0


class ReconciliationScan:
    """Periodic sweep over the task ledger.

    Example:
        >>> scan = ReconciliationScan(ledger, archiver, staleness_seconds=600)
        >>> report = await scan.run_once()
    """

    def __init__(
        self,
        ledger: TaskLedger,
        archiver: Archiver,
        staleness_seconds: float = 600.0,
        interval_seconds: float = 300.0,
        batch_size: int = 500,
    ) -> None:
        self.ledger = ledger
        self.archiver = archiver
        self.staleness_ms = int(staleness_seconds * 1000)
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self._running = False
        self._wakeup = asyncio.Event()

    async def run_once(self, now: int | None = None) -> ReconciliationReport:
        """Re-drive every stale non-terminal task once."""
        now = now if now is not None else now_ms()
        stale = await self.ledger.list_stale(now - self.staleness_ms, self.batch_size)
        report = ReconciliationReport(scanned=len(stale))

        for task in stale:
            if self.archiver.stopping:
                report.pending += 1
                continue
            try:
                result = await self.archiver.resume(task)
            except Exception as e:
                logger.error(
                    f"Reconciliation failed for task: {e}",
                    exc_info=True,
                    extra={"record_id": task.ref.record_id},
                )
                report.pending += 1
                continue

            if result.outcome == ArchivalOutcome.DEAD_LETTERED:
                report.dead_lettered += 1
            elif result.is_terminal:
                report.healed += 1
            else:
                report.pending += 1

        if report.scanned:
            logger.info(
                "Reconciliation sweep complete",
                extra={
                    "scanned": report.scanned,
                    "healed": report.healed,
                    "dead_lettered": report.dead_lettered,
                    "pending": report.pending,
                },
            )
        return report

    async def start(self) -> None:
        """Run sweeps every interval_seconds until stopped."""
        if self._running:
            logger.warning("Reconciliation scan already running")
            return

        self._running = True
        logger.info(
            "Starting reconciliation scan",
            extra={"interval_seconds": self.interval_seconds, "staleness_ms": self.staleness_ms},
        )
        try:
            while self._running:
                try:
                    await self.run_once()
                except Exception as e:
                    logger.error(f"Reconciliation sweep error: {e}", exc_info=True)
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Reconciliation scan cancelled")
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop the sweep loop."""
        self._running = False
        self._wakeup.set()
        logger.info("Stopping reconciliation scan")
