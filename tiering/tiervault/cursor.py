"""
Durable, resumable cursor over the hot store change feed.

Delivery is at-least-once: advance() never persists anything, so a crash
before persist() replays the same batch on restart. Downstream stages
must therefore be idempotent.

Invariants:
    - The persisted position only moves forward
    - advance() reads strictly after the in-memory position
    - persist() is the only write; it is called by the server once every
      task of a batch is terminal

How to change safely:
    - FeedPosition tokens are stored as text; keep parsing backward compatible
    - Never persist a position before the batch behind it is terminal
"""

from __future__ import annotations

import logging

from .hot.base import START, ChangeBatch, FeedPosition, HotStore
from .models import now_ms
from .state.control_store import ControlStore

logger = logging.getLogger(__name__)


class ChangeCursor:
    """Resumable position into the hot store change feed.

    Example:
        >>> cursor = ChangeCursor(hot, control, consumer="tiervault-archiver")
        >>> await cursor.load()
        >>> batch = await cursor.advance(limit=100)
        >>> ...  # process batch to terminal state
        >>> await cursor.persist(batch.position)
    """

    def __init__(self, hot: HotStore, control: ControlStore, consumer: str) -> None:
        self.hot = hot
        self.control = control
        self.consumer = consumer
        self._position: FeedPosition = START
        self._persisted: FeedPosition = START

    def current_position(self) -> FeedPosition:
        """Position after the last batch returned by advance()."""
        return self._position

    @property
    def persisted_position(self) -> FeedPosition:
        return self._persisted

    async def load(self) -> FeedPosition:
        """Restore the persisted position (START if none)."""
        with self.control.connection() as conn:
            row = conn.execute(
                "SELECT position FROM cursor_positions WHERE consumer = ?",
                (self.consumer,),
            ).fetchone()
        position = FeedPosition.parse(row["position"]) if row else START
        self._position = position
        self._persisted = position
        logger.info(
            "Change cursor loaded",
            extra={"consumer": self.consumer, "position": str(position)},
        )
        return position

    async def advance(self, limit: int) -> ChangeBatch:
        """Read the next batch of changes after the current position."""
        batch = await self.hot.changes_since(self._position, limit)
        self._position = batch.position
        return batch

    def rewind(self) -> None:
        """Move the in-memory position back to the last persisted one.

        Used when a batch could not be driven to completion, so it is
        re-read on the next advance().
        """
        self._position = self._persisted

    async def persist(self, position: FeedPosition) -> None:
        """Durably store ``position``. Older positions are ignored."""
        if position < self._persisted:
            logger.warning(
                "Ignoring cursor persist that would move backwards",
                extra={
                    "consumer": self.consumer,
                    "position": str(position),
                    "persisted": str(self._persisted),
                },
            )
            return
        if position == self._persisted:
            return

        async with self.control.write_lock:
            with self.control.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO cursor_positions (consumer, position, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT (consumer) DO UPDATE SET
                        position = excluded.position,
                        updated_at = excluded.updated_at
                    """,
                    (self.consumer, str(position), now_ms()),
                )
        self._persisted = position
        logger.debug(
            "Change cursor persisted",
            extra={"consumer": self.consumer, "position": str(position)},
        )
