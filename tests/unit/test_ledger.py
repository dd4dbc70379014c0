"""
Unit tests for the archival task ledger.
"""

import pytest

from tests.helpers import OLD_CREATED_AT
from tiering.tiervault.models import ArchivalTask, RecordRef, TaskState, now_ms


def _task(record_id="r1", **kwargs):
    return ArchivalTask(ref=RecordRef(record_id, record_id, OLD_CREATED_AT), **kwargs)


class TestTaskLedger:
    """Tests for TaskLedger."""

    @pytest.mark.asyncio
    async def test_claim_new_task(self, ledger):
        claimed = await ledger.claim(_task())

        assert claimed.state == TaskState.PENDING
        assert claimed.attempt == 1
        stored = await ledger.get(claimed.ref)
        assert stored.state == TaskState.PENDING
        assert stored.attempt == 1

    @pytest.mark.asyncio
    async def test_claim_resumes_existing_state(self, ledger):
        task = await ledger.claim(_task())
        task.state = TaskState.DELETING
        task.last_error = "reset"
        await ledger.save(task)

        claimed = await ledger.claim(_task())

        assert claimed.state == TaskState.DELETING
        assert claimed.attempt == 2
        assert claimed.last_error == "reset"

    @pytest.mark.asyncio
    async def test_terminal_tasks_are_removed(self, ledger):
        task = await ledger.claim(_task())
        task.state = TaskState.DONE
        await ledger.save(task)

        assert await ledger.get(task.ref) is None

    @pytest.mark.asyncio
    async def test_dead_lettered_tasks_are_removed(self, ledger):
        task = await ledger.claim(_task())
        task.state = TaskState.DEAD_LETTERED
        await ledger.save(task)

        assert await ledger.get(task.ref) is None

    @pytest.mark.asyncio
    async def test_list_stale(self, ledger):
        await ledger.claim(_task("a"))
        await ledger.claim(_task("b"))

        assert await ledger.list_stale(0, 10) == []

        stale = await ledger.list_stale(now_ms() + 1000, 10)
        assert sorted(t.ref.record_id for t in stale) == ["a", "b"]

        assert len(await ledger.list_stale(now_ms() + 1000, 1)) == 1

    @pytest.mark.asyncio
    async def test_count_by_state(self, ledger):
        await ledger.claim(_task("a"))
        task = await ledger.claim(_task("b"))
        task.state = TaskState.WRITING
        await ledger.save(task)

        assert await ledger.count_by_state() == {"pending": 1, "writing": 1}
