"""
Archival trigger: decides which records are old enough to move to cold.

Two sources feed it:
- change-feed batches (tasks_for), which catch records that are already
  old when they change, including replays after a restart
- a periodic age sweep over the hot store (sweep), which catches records
  that were too young when their change went past

Invariants:
    - A record is eligible when now - created_at >= age threshold
    - At most one task per record identity per call
    - A record whose last change in the batch is a delete gets no task
    - The sweep never emits a task for a dead-lettered record
"""

from __future__ import annotations

import logging

from .deadletter import DeadLetterSink
from .hot.base import ChangeBatch, ChangeOp, HotStore
from .models import ArchivalTask, RecordRef, now_ms

logger = logging.getLogger(__name__)


class ArchivalTrigger:
    """Turns changes and aging records into archival tasks.

    Example:
        >>> trigger = ArchivalTrigger(hot, age_threshold_ms=90 * 86_400_000)
        >>> tasks = trigger.tasks_for(batch)
    """

    def __init__(
        self,
        hot: HotStore,
        age_threshold_ms: int,
        dead_letters: DeadLetterSink | None = None,
    ) -> None:
        self.hot = hot
        self.age_threshold_ms = age_threshold_ms
        self.dead_letters = dead_letters

    def is_eligible(self, ref: RecordRef, now: int | None = None) -> bool:
        now = now if now is not None else now_ms()
        return now - ref.created_at >= self.age_threshold_ms

    def tasks_for(self, batch: ChangeBatch, now: int | None = None) -> list[ArchivalTask]:
        """Emit one task per distinct eligible record in ``batch``."""
        now = now if now is not None else now_ms()

        latest: dict[tuple[str, str], ChangeOp] = {}
        refs: dict[tuple[str, str], RecordRef] = {}
        for change in batch.changes:
            latest[change.ref.identity] = change.op
            refs[change.ref.identity] = change.ref

        tasks = [
            ArchivalTask(ref=refs[identity])
            for identity, op in latest.items()
            if op == ChangeOp.UPSERT and self.is_eligible(refs[identity], now)
        ]

        if tasks:
            logger.debug(
                "Emitted archival tasks from change batch",
                extra={"changes": len(batch), "tasks": len(tasks)},
            )
        return tasks

    async def sweep(self, now: int | None = None, limit: int = 1000) -> list[ArchivalTask]:
        """Emit tasks for hot records already past the age threshold.

        Records with a dead-letter entry keep their hot copy but are left
        to administrative reprocessing; the sweep pages past them so they
        never crowd out healthy records.
        """
        now = now if now is not None else now_ms()
        cutoff = now - self.age_threshold_ms
        tasks: list[ArchivalTask] = []
        skipped = 0
        after: RecordRef | None = None

        while len(tasks) < limit:
            refs = await self.hot.list_created_before(cutoff + 1, limit, after=after)
            if not refs:
                break
            excluded = (
                await self.dead_letters.dead_lettered(refs)
                if self.dead_letters is not None
                else set()
            )
            for ref in refs:
                if ref.identity in excluded:
                    skipped += 1
                    continue
                tasks.append(ArchivalTask(ref=ref))
                if len(tasks) == limit:
                    break
            if len(refs) < limit:
                break
            after = refs[-1]

        logger.info(
            "Age sweep found eligible records",
            extra={"cutoff_ms": cutoff, "tasks": len(tasks), "dead_lettered_skipped": skipped},
        )
        return tasks
