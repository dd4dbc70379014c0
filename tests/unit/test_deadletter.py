"""
Unit tests for DeadLetterSink.
"""

import pytest

from tests.helpers import OLD_CREATED_AT
from tiering.tiervault.errors import PermanentWriteFailure, PermissionDeniedError, ThrottledError
from tiering.tiervault.models import ArchivalTask, RecordRef


def _task(record_id="r1", partition_key=None, attempt=1):
    ref = RecordRef(record_id, partition_key or record_id, OLD_CREATED_AT)
    return ArchivalTask(ref=ref, attempt=attempt)


class TestDeadLetterSink:
    """Tests for DeadLetterSink."""

    @pytest.mark.asyncio
    async def test_enqueue(self, sink):
        failure = PermanentWriteFailure("gave up", last_error=ThrottledError("x"), attempts=5)

        entry = await sink.enqueue(_task(attempt=3), failure)

        assert entry.ref.record_id == "r1"
        assert entry.error_code == "PERMANENT_WRITE_FAILURE"
        assert entry.attempt == 3
        assert entry.last_error == "gave up"
        assert entry.first_failed_at == entry.last_failed_at
        assert await sink.get(entry.ref) == entry

    @pytest.mark.asyncio
    async def test_re_enqueue_updates_in_place(self, sink):
        first = await sink.enqueue(_task(attempt=1), ThrottledError("first"))
        second = await sink.enqueue(_task(attempt=2), PermissionDeniedError("second"))

        assert await sink.count() == 1
        assert second.first_failed_at == first.first_failed_at
        assert second.last_failed_at >= first.last_failed_at
        assert second.attempt == 2
        assert second.error_code == "PERMISSION_DENIED"
        assert second.last_error == "second"

    @pytest.mark.asyncio
    async def test_re_enqueue_counts_up_when_attempt_restarts(self, sink):
        await sink.enqueue(_task(attempt=1), ThrottledError("first"))
        await sink.enqueue(_task(attempt=1), ThrottledError("second"))
        third = await sink.enqueue(_task(attempt=1), ThrottledError("third"))

        assert third.attempt == 3

    @pytest.mark.asyncio
    async def test_list_and_limit(self, sink):
        for record_id in ("a", "b", "c"):
            await sink.enqueue(_task(record_id), ThrottledError("x"))

        assert len(await sink.list()) == 3
        assert len(await sink.list(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_drain_does_not_remove(self, sink):
        await sink.enqueue(_task(), ThrottledError("x"))

        drained = await sink.drain_for_reprocessing()

        assert [e.ref.record_id for e in drained] == ["r1"]
        assert await sink.count() == 1

    @pytest.mark.asyncio
    async def test_remove(self, sink):
        await sink.enqueue(_task(), ThrottledError("x"))

        assert await sink.remove("r1") is True
        assert await sink.remove("r1") is False
        assert await sink.count() == 0

    @pytest.mark.asyncio
    async def test_remove_with_partition_key(self, sink):
        await sink.enqueue(_task("r1", partition_key="tenant-1"), ThrottledError("x"))

        assert await sink.remove("r1") is False
        assert await sink.remove("r1", "tenant-1") is True

    @pytest.mark.asyncio
    async def test_entry_dict_form(self, sink):
        entry = await sink.enqueue(_task(), ThrottledError("x"))
        data = entry.to_dict()
        assert data["record_id"] == "r1"
        assert data["created_at"] == OLD_CREATED_AT
        assert data["error_code"] == "THROTTLED"

    @pytest.mark.asyncio
    async def test_find(self, sink):
        await sink.enqueue(_task("r1", partition_key="tenant-1"), ThrottledError("x"))

        assert await sink.find("r1") is None
        assert (await sink.find("r1", "tenant-1")).ref.partition_key == "tenant-1"

    @pytest.mark.asyncio
    async def test_dead_lettered(self, sink):
        await sink.enqueue(_task("a"), ThrottledError("x"))
        refs = [_task(record_id).ref for record_id in ("a", "b")]

        assert await sink.dead_lettered(refs) == {("a", "a")}
        assert await sink.dead_lettered([]) == set()
