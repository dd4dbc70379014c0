"""
Base protocol and types for the hot store.

The hot store is the low-latency transactional tier. Besides point reads
and writes it exposes:
- an optimistic conditional delete (delete-if-unchanged by version)
- an ordered change feed, consumed at-least-once by the archiver

Invariants:
    - version strictly increases on every put of the same identity
    - The change feed is totally ordered; positions only move forward
    - Changes for one record appear in the order they were made

How to change safely:
    - Protocol changes require updating all implementations
    - Feed positions are persisted; keep FeedPosition.parse backward compatible
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol, runtime_checkable

from ..models import Record, RecordRef


@dataclass(frozen=True, order=True)
class FeedPosition:
    """Opaque position in the hot store change feed.

    Attributes:
        sequence: Sequence number of the last consumed change (0 = start)
    """

    sequence: int = 0

    def __str__(self) -> str:
        return f"seq:{self.sequence}"

    @classmethod
    def parse(cls, token: str) -> FeedPosition:
        """Parse the string form produced by str()."""
        kind, _, value = token.partition(":")
        if kind != "seq" or not value.isdigit():
            raise ValueError(f"Invalid feed position token: {token!r}")
        return cls(sequence=int(value))


START = FeedPosition(0)


class ChangeOp(Enum):
    """Kind of mutation recorded in the change feed."""

    UPSERT = "upsert"
    DELETE = "delete"


@dataclass(frozen=True)
class Change:
    """One entry of the change feed.

    Attributes:
        position: Position of this change
        ref: Record the change applies to
        op: Kind of mutation
        version: Record version after the change
    """

    position: FeedPosition
    ref: RecordRef
    op: ChangeOp
    version: int


@dataclass(frozen=True)
class ChangeBatch:
    """Changes returned by one feed read.

    Attributes:
        changes: Changes in feed order
        position: Position after the last change (unchanged if empty)
    """

    changes: List[Change] = field(default_factory=list)
    position: FeedPosition = START

    def __len__(self) -> int:
        return len(self.changes)


class DeleteOutcome(Enum):
    """Result of a conditional delete."""

    OK = "ok"
    VERSION_MISMATCH = "version_mismatch"
    NOT_FOUND = "not_found"


@runtime_checkable
class HotStore(Protocol):
    """Protocol for hot store backends.

    Error contract:
        - get() raises RecordNotFoundError on a definitive miss
        - Backend throttling/timeouts surface as TransientError subclasses
    """

    @abstractmethod
    async def get(self, record_id: str, partition_key: str) -> Record:
        """Read a record by identity.

        Raises:
            RecordNotFoundError: If the record does not exist
        """
        ...

    @abstractmethod
    async def put(self, record: Record) -> Record:
        """Create or replace a record and append an upsert change.

        Returns:
            The stored record with its new version
        """
        ...

    @abstractmethod
    async def delete_if_unchanged(
        self, record_id: str, partition_key: str, version: int
    ) -> DeleteOutcome:
        """Delete a record only if its version still equals ``version``."""
        ...

    @abstractmethod
    async def changes_since(self, position: FeedPosition, limit: int) -> ChangeBatch:
        """Read up to ``limit`` changes strictly after ``position``."""
        ...

    @abstractmethod
    async def list_created_before(
        self, cutoff_ms: int, limit: int, after: Optional[RecordRef] = None
    ) -> List[RecordRef]:
        """List records created before ``cutoff_ms`` in ``RecordRef.age_order``.

        Args:
            cutoff_ms: Exclusive upper bound on created_at
            limit: Maximum refs returned
            after: Resume strictly after this ref (keyset paging)
        """
        ...
