"""
Core data model for TierVault.

Defines the record, its lightweight reference, archival tasks and dead
letter entries, plus the deterministic cold-store key layout:

    <prefix>/year=YYYY/month=MM/day=DD/<record_id>

Invariants:
    - A record's identity is (record_id, partition_key)
    - created_at (Unix ms, UTC) is immutable and decides the cold key
    - content_hash is "sha256:<hex>" of the payload and never changes
    - cold_key() is a pure function of (created date, record_id)

How to change safely:
    - Never change the key layout for existing prefixes; cold lookups
      for already archived records would systematically miss
    - Add task states only at the end of the lifecycle
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from .errors import MalformedPayloadError

MAX_PAYLOAD_BYTES = 300 * 1024
DEFAULT_COLD_PREFIX = "records"


def now_ms() -> int:
    """Current time as Unix milliseconds."""
    return int(time.time() * 1000)


def compute_content_hash(payload: bytes) -> str:
    """Compute SHA-256 content hash of a payload."""
    return f"sha256:{hashlib.sha256(payload).hexdigest()}"


def created_date(created_at_ms: int) -> date:
    """UTC calendar date of a creation timestamp."""
    return datetime.fromtimestamp(created_at_ms / 1000.0, tz=timezone.utc).date()


def validate_record_id(record_id: str) -> None:
    """Reject ids that cannot be used as the last cold key segment."""
    if not record_id or "/" in record_id or record_id in (".", ".."):
        raise MalformedPayloadError(f"Invalid record id: {record_id!r}", record_id=record_id)


def cold_key(day: date, record_id: str, prefix: str = DEFAULT_COLD_PREFIX) -> str:
    """Build the cold-store object key for a record.

    Args:
        day: UTC creation date of the record
        record_id: Record identifier
        prefix: Key prefix (bucket folder)

    Returns:
        Hierarchical key partitioned by date components then identity

    Raises:
        MalformedPayloadError: If record_id cannot be used in a key
    """
    validate_record_id(record_id)
    base = f"year={day.year:04d}/month={day.month:02d}/day={day.day:02d}/{record_id}"
    prefix = prefix.strip("/")
    return f"{prefix}/{base}" if prefix else base


@dataclass(frozen=True)
class RecordRef:
    """Reference to a record, enough to locate it in either tier.

    Attributes:
        record_id: Record identifier
        partition_key: Hot store partition key
        created_at: Creation timestamp (Unix ms)
    """

    record_id: str
    partition_key: str
    created_at: int

    @property
    def identity(self) -> tuple[str, str]:
        return (self.record_id, self.partition_key)

    @property
    def age_order(self) -> tuple[int, str, str]:
        """Total order used by the age sweep (oldest first, ties by identity)."""
        return (self.created_at, self.record_id, self.partition_key)

    def cold_key(self, prefix: str = DEFAULT_COLD_PREFIX) -> str:
        return cold_key(created_date(self.created_at), self.record_id, prefix)

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "partition_key": self.partition_key,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecordRef:
        return cls(
            record_id=data["record_id"],
            partition_key=data["partition_key"],
            created_at=int(data["created_at"]),
        )

    def __str__(self) -> str:
        return f"{self.partition_key}/{self.record_id}"


@dataclass(frozen=True)
class Record:
    """A record as held by the hot store.

    Attributes:
        record_id: Record identifier
        partition_key: Hot store partition key
        created_at: Creation timestamp (Unix ms)
        payload: Opaque record bytes
        content_hash: SHA-256 of payload, fixed at creation
        version: Hot store concurrency token, bumped on every put
    """

    record_id: str
    partition_key: str
    created_at: int
    payload: bytes
    content_hash: str
    version: int = 0

    @classmethod
    def create(
        cls,
        record_id: str,
        payload: bytes,
        partition_key: str | None = None,
        created_at: int | None = None,
    ) -> Record:
        """Build a new record, computing its content hash.

        Raises:
            MalformedPayloadError: If the id is invalid or payload too large
        """
        validate_record_id(record_id)
        if len(payload) > MAX_PAYLOAD_BYTES:
            raise MalformedPayloadError(
                f"Payload exceeds {MAX_PAYLOAD_BYTES} bytes",
                record_id=record_id,
                size=len(payload),
            )
        return cls(
            record_id=record_id,
            partition_key=partition_key if partition_key is not None else record_id,
            created_at=created_at if created_at is not None else now_ms(),
            payload=payload,
            content_hash=compute_content_hash(payload),
        )

    @property
    def ref(self) -> RecordRef:
        return RecordRef(self.record_id, self.partition_key, self.created_at)

    def verify_hash(self) -> None:
        """Check the payload still matches its content hash.

        Raises:
            MalformedPayloadError: If the payload was altered
        """
        actual = compute_content_hash(self.payload)
        if actual != self.content_hash:
            raise MalformedPayloadError(
                "Payload does not match content hash",
                record_id=self.record_id,
                expected=self.content_hash,
                actual=actual,
            )


class TaskState(Enum):
    """Lifecycle of an archival task."""

    PENDING = "pending"
    WRITING = "writing"
    VERIFIED = "verified"
    DELETING = "deleting"
    DONE = "done"
    DEAD_LETTERED = "dead_lettered"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.DONE, TaskState.DEAD_LETTERED)


@dataclass
class ArchivalTask:
    """Unit of work for moving one record from hot to cold.

    Attributes:
        ref: Record being archived
        attempt: Number of protocol runs so far
        state: Last persisted lifecycle state
        last_error: Last error message, if any
        updated_at: Last state change (Unix ms)
    """

    ref: RecordRef
    attempt: int = 0
    state: TaskState = TaskState.PENDING
    last_error: str | None = None
    updated_at: int = field(default_factory=now_ms)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


@dataclass(frozen=True)
class DeadLetterEntry:
    """A permanently failed archival attempt awaiting manual reprocessing.

    Attributes:
        ref: Record that failed to archive
        last_error: Last error message
        error_code: Stable error code (see errors.py)
        attempt: Attempt count at the last failure
        first_failed_at: First failure time (Unix ms)
        last_failed_at: Most recent failure time (Unix ms)
    """

    ref: RecordRef
    last_error: str
    error_code: str
    attempt: int
    first_failed_at: int
    last_failed_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.ref.to_dict(),
            "last_error": self.last_error,
            "error_code": self.error_code,
            "attempt": self.attempt,
            "first_failed_at": self.first_failed_at,
            "last_failed_at": self.last_failed_at,
        }
