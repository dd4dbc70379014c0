"""
Unit tests for ChangeCursor.

Tests cover:
- Load from an empty and a persisted state
- advance() is in-memory only
- persist() only moves forward
- rewind() for replay
"""

import pytest

from tests.helpers import old_record
from tiering.tiervault.cursor import ChangeCursor
from tiering.tiervault.hot import START, FeedPosition


class TestChangeCursor:
    """Tests for ChangeCursor."""

    @pytest.fixture
    async def seeded_hot(self, hot):
        for record_id in ("a", "b", "c"):
            await hot.put(old_record(record_id))
        return hot

    @pytest.mark.asyncio
    async def test_load_empty(self, seeded_hot, control):
        cursor = ChangeCursor(seeded_hot, control, "archiver")
        assert await cursor.load() == START

    @pytest.mark.asyncio
    async def test_advance_does_not_persist(self, seeded_hot, control):
        cursor = ChangeCursor(seeded_hot, control, "archiver")
        await cursor.load()

        batch = await cursor.advance(2)

        assert len(batch) == 2
        assert cursor.current_position() == FeedPosition(2)
        assert cursor.persisted_position == START

        restarted = ChangeCursor(seeded_hot, control, "archiver")
        assert await restarted.load() == START

    @pytest.mark.asyncio
    async def test_advance_reads_strictly_after_position(self, seeded_hot, control):
        cursor = ChangeCursor(seeded_hot, control, "archiver")
        await cursor.load()

        first = await cursor.advance(2)
        second = await cursor.advance(2)

        assert [c.ref.record_id for c in first.changes] == ["a", "b"]
        assert [c.ref.record_id for c in second.changes] == ["c"]

    @pytest.mark.asyncio
    async def test_persist_survives_restart(self, seeded_hot, control):
        cursor = ChangeCursor(seeded_hot, control, "archiver")
        await cursor.load()
        batch = await cursor.advance(2)
        await cursor.persist(batch.position)

        restarted = ChangeCursor(seeded_hot, control, "archiver")
        assert await restarted.load() == FeedPosition(2)

        remaining = await restarted.advance(10)
        assert [c.ref.record_id for c in remaining.changes] == ["c"]

    @pytest.mark.asyncio
    async def test_persist_never_moves_backwards(self, seeded_hot, control):
        cursor = ChangeCursor(seeded_hot, control, "archiver")
        await cursor.load()
        await cursor.persist(FeedPosition(3))
        await cursor.persist(FeedPosition(1))

        assert cursor.persisted_position == FeedPosition(3)
        restarted = ChangeCursor(seeded_hot, control, "archiver")
        assert await restarted.load() == FeedPosition(3)

    @pytest.mark.asyncio
    async def test_rewind_replays_unpersisted_batch(self, seeded_hot, control):
        cursor = ChangeCursor(seeded_hot, control, "archiver")
        await cursor.load()
        first = await cursor.advance(2)

        cursor.rewind()
        replay = await cursor.advance(2)

        assert [c.position for c in replay.changes] == [c.position for c in first.changes]

    @pytest.mark.asyncio
    async def test_consumers_are_independent(self, seeded_hot, control):
        one = ChangeCursor(seeded_hot, control, "one")
        await one.load()
        await one.persist(FeedPosition(3))

        two = ChangeCursor(seeded_hot, control, "two")
        assert await two.load() == START
