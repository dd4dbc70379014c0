"""
In-memory hot store implementation for testing.

This module provides a simple in-memory hot store for:
- Unit tests
- Integration tests
- Local development without external dependencies

Invariants:
    - All data is lost on process exit
    - Provides the same versioning and change-feed guarantees as SqliteHotStore
    - Safe for concurrent coroutines (single asyncio lock)

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with HotStore protocol
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from ..errors import MalformedPayloadError, RecordNotFoundError
from ..faults import FaultInjector
from ..models import Record, RecordRef
from .base import Change, ChangeBatch, ChangeOp, DeleteOutcome, FeedPosition

logger = logging.getLogger(__name__)


class InMemoryHotStore:
    """In-memory implementation of HotStore for testing.

    Injected faults apply per operation name: ``get``, ``put``,
    ``delete_if_unchanged``, ``changes_since``, ``list_created_before``.

    Example:
        >>> hot = InMemoryHotStore()
        >>> stored = await hot.put(Record.create("r1", b"data"))
        >>> hot.faults.fail("get", TransientNetworkError("reset"))
    """

    def __init__(self) -> None:
        self._records: Dict[Tuple[str, str], Record] = {}
        self._changes: List[Change] = []
        self._lock = asyncio.Lock()
        self.faults = FaultInjector()

    async def get(self, record_id: str, partition_key: str) -> Record:
        await self.faults.check("get")
        record = self._records.get((partition_key, record_id))
        if record is None:
            raise RecordNotFoundError(
                f"Record not found in hot store: {partition_key}/{record_id}",
                key=record_id,
            )
        return record

    async def put(self, record: Record) -> Record:
        await self.faults.check("put")
        record.verify_hash()
        async with self._lock:
            key = (record.partition_key, record.record_id)
            existing = self._records.get(key)
            if existing is not None and (
                existing.created_at != record.created_at
                or existing.content_hash != record.content_hash
            ):
                raise MalformedPayloadError(
                    "created_at and content_hash are immutable",
                    record_id=record.record_id,
                )
            version = existing.version + 1 if existing else 1
            stored = Record(
                record_id=record.record_id,
                partition_key=record.partition_key,
                created_at=record.created_at,
                payload=record.payload,
                content_hash=record.content_hash,
                version=version,
            )
            self._records[key] = stored
            self._append_change(stored.ref, ChangeOp.UPSERT, version)
        return stored

    async def delete_if_unchanged(
        self, record_id: str, partition_key: str, version: int
    ) -> DeleteOutcome:
        await self.faults.check("delete_if_unchanged")
        async with self._lock:
            key = (partition_key, record_id)
            existing = self._records.get(key)
            if existing is None:
                return DeleteOutcome.NOT_FOUND
            if existing.version != version:
                return DeleteOutcome.VERSION_MISMATCH
            del self._records[key]
            self._append_change(existing.ref, ChangeOp.DELETE, version)
        return DeleteOutcome.OK

    async def changes_since(self, position: FeedPosition, limit: int) -> ChangeBatch:
        await self.faults.check("changes_since")
        changes = [c for c in self._changes if c.position > position][:limit]
        next_position = changes[-1].position if changes else position
        return ChangeBatch(changes=changes, position=next_position)

    async def list_created_before(
        self, cutoff_ms: int, limit: int, after: Optional[RecordRef] = None
    ) -> List[RecordRef]:
        await self.faults.check("list_created_before")
        refs = sorted(
            (r.ref for r in self._records.values() if r.created_at < cutoff_ms),
            key=lambda ref: ref.age_order,
        )
        if after is not None:
            refs = [ref for ref in refs if ref.age_order > after.age_order]
        return refs[:limit]

    def _append_change(self, ref: RecordRef, op: ChangeOp, version: int) -> None:
        position = FeedPosition(len(self._changes) + 1)
        self._changes.append(Change(position=position, ref=ref, op=op, version=version))

    # Testing helpers

    def contains(self, record_id: str, partition_key: str | None = None) -> bool:
        """Whether the record is currently held (no fault injection)."""
        return (partition_key or record_id, record_id) in self._records

    def record_count(self) -> int:
        return len(self._records)

    def change_count(self) -> int:
        return len(self._changes)
