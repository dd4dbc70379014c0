"""
Unit tests for ArchivalTrigger.
"""

import pytest

from tests.helpers import DAY_MS, OLD_CREATED_AT, fast_retry, old_record
from tiering.tiervault.archive import ArchivalOutcome, ArchivalWorkerPool, Archiver
from tiering.tiervault.errors import ThrottledError
from tiering.tiervault.hot import Change, ChangeBatch, ChangeOp, FeedPosition
from tiering.tiervault.models import ArchivalTask, Record, RecordRef
from tiering.tiervault.trigger import ArchivalTrigger

THRESHOLD = 1000
NOW = 10_000


def _change(seq, record_id, created_at, op=ChangeOp.UPSERT):
    return Change(
        position=FeedPosition(seq),
        ref=RecordRef(record_id, record_id, created_at),
        op=op,
        version=1,
    )


class TestArchivalTrigger:
    """Tests for ArchivalTrigger."""

    @pytest.fixture
    def trigger(self, hot):
        return ArchivalTrigger(hot, age_threshold_ms=THRESHOLD)

    def test_eligibility_boundary(self, trigger):
        assert trigger.is_eligible(RecordRef("r", "r", NOW - THRESHOLD), NOW)
        assert not trigger.is_eligible(RecordRef("r", "r", NOW - THRESHOLD + 1), NOW)

    def test_tasks_only_for_old_records(self, trigger):
        batch = ChangeBatch(
            changes=[_change(1, "old", 1000), _change(2, "young", 9500)],
            position=FeedPosition(2),
        )

        tasks = trigger.tasks_for(batch, NOW)

        assert [t.ref.record_id for t in tasks] == ["old"]

    def test_one_task_per_record(self, trigger):
        batch = ChangeBatch(
            changes=[_change(1, "a", 1000), _change(2, "a", 1000), _change(3, "b", 2000)],
            position=FeedPosition(3),
        )

        tasks = trigger.tasks_for(batch, NOW)

        assert sorted(t.ref.record_id for t in tasks) == ["a", "b"]

    def test_deleted_record_gets_no_task(self, trigger):
        batch = ChangeBatch(
            changes=[_change(1, "a", 1000), _change(2, "a", 1000, ChangeOp.DELETE)],
            position=FeedPosition(2),
        )
        assert trigger.tasks_for(batch, NOW) == []

    def test_empty_batch(self, trigger):
        assert trigger.tasks_for(ChangeBatch(), NOW) == []

    @pytest.mark.asyncio
    async def test_sweep_finds_aged_records(self, trigger, hot):
        for record_id, created_at in (("a", 1000), ("b", 9000), ("c", 9500)):
            await hot.put(Record.create(record_id, b"x", created_at=created_at))

        tasks = await trigger.sweep(now=NOW)

        assert [t.ref.record_id for t in tasks] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_sweep_respects_limit(self, trigger, hot):
        for index in range(5):
            await hot.put(Record.create(f"r{index}", b"x", created_at=1000 + index))

        tasks = await trigger.sweep(now=NOW, limit=2)

        assert [t.ref.record_id for t in tasks] == ["r0", "r1"]

    @pytest.mark.asyncio
    async def test_sweep_ties_ordered_by_identity(self, trigger, hot):
        for record_id in ("b", "a", "c"):
            await hot.put(Record.create(record_id, b"x", created_at=1000))

        first = await trigger.sweep(now=NOW, limit=2)

        assert [t.ref.record_id for t in first] == ["a", "b"]


class TestSweepWithDeadLetters:
    """The age sweep must not be starved by dead-lettered records."""

    @pytest.fixture
    def trigger(self, hot, sink):
        return ArchivalTrigger(hot, age_threshold_ms=THRESHOLD, dead_letters=sink)

    async def _dead_letter(self, sink, record):
        await sink.enqueue(ArchivalTask(ref=record.ref, attempt=1), ThrottledError("x"))

    @pytest.mark.asyncio
    async def test_skips_dead_lettered(self, trigger, hot, sink):
        bad = await hot.put(Record.create("bad", b"x", created_at=1000))
        await hot.put(Record.create("good", b"x", created_at=2000))
        await self._dead_letter(sink, bad)

        tasks = await trigger.sweep(now=NOW)

        assert [t.ref.record_id for t in tasks] == ["good"]

    @pytest.mark.asyncio
    async def test_pages_past_dead_letters(self, trigger, hot, sink):
        for index in range(5):
            stored = await hot.put(Record.create(f"bad-{index}", b"x", created_at=1000 + index))
            await self._dead_letter(sink, stored)
        await hot.put(Record.create("good-0", b"x", created_at=3000))
        await hot.put(Record.create("good-1", b"x", created_at=3001))
        await hot.put(Record.create("good-2", b"x", created_at=3002))

        tasks = await trigger.sweep(now=NOW, limit=2)

        assert [t.ref.record_id for t in tasks] == ["good-0", "good-1"]

    @pytest.mark.asyncio
    async def test_only_dead_letters_yields_nothing(self, trigger, hot, sink):
        for index in range(3):
            stored = await hot.put(Record.create(f"bad-{index}", b"x", created_at=1000 + index))
            await self._dead_letter(sink, stored)

        assert await trigger.sweep(now=NOW, limit=2) == []

    @pytest.mark.asyncio
    async def test_repeated_sweeps_reach_healthy_record(self, hot, cold, ledger, sink):
        """Records that dead-letter on every run leave room for the rest."""
        trigger = ArchivalTrigger(hot, age_threshold_ms=DAY_MS, dead_letters=sink)
        pool = ArchivalWorkerPool(Archiver(hot, cold, ledger, sink, fast_retry()), max_workers=2)
        for index in range(2):
            stored = await hot.put(old_record(f"bad-{index}", b"payload"))
            cold.put_raw(stored.ref.cold_key(), b"something else")
        await hot.put(Record.create("good", b"payload", created_at=OLD_CREATED_AT + 1))

        rounds = []
        for _ in range(3):
            results = await pool.run_batch(await trigger.sweep(limit=2))
            rounds.append([(r.task.ref.record_id, r.outcome) for r in results])

        assert rounds[0] == [
            ("bad-0", ArchivalOutcome.DEAD_LETTERED),
            ("bad-1", ArchivalOutcome.DEAD_LETTERED),
        ]
        assert rounds[1] == [("good", ArchivalOutcome.ARCHIVED)]
        assert rounds[2] == []
        assert not hot.contains("good")
        assert hot.contains("bad-0") and hot.contains("bad-1")
        assert [e.attempt for e in await sink.list()] == [1, 1]
