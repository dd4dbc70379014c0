"""
Record archiver for TierVault.

The Archiver moves one record from the hot store to the cold store using
an ordered, idempotent protocol instead of a cross-store transaction:

    1. load     read the record from hot (not-found: already moved or deleted)
    2. key      derive the cold key from (created_at, record_id)
    3. write    put payload bytes at the key; an existing object with the
                same hash is success, a different hash is an integrity error
    4. verify   read the object back and compare hashes (mandatory)
    5. delete   delete-if-unchanged on the hot store using the version read in 1
    6. done

Every state transition is saved to the task ledger before the next step,
so a crash at any point leaves a ledger entry that the reconciliation scan
re-drives from the last known step.

Invariants:
    - Hot deletion never happens before a verified cold write
    - Payload bytes are written unchanged; content_hash is checked twice
    - Write/verify failures dead-letter the task and leave hot untouched
    - Delete failures after verification are deferred, never dead-lettered
      for transient causes; the record stays readable from hot meanwhile
    - A version conflict on delete abandons this run (the record changed)

How to change safely:
    - Never reorder write/verify/delete
    - Keep every step idempotent; the change feed is at-least-once
    - Test crash points with the in-memory stores' fault injection
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from ..cold.base import ColdStore
from ..deadletter import DeadLetterSink
from ..errors import (
    ErrorClass,
    FinalError,
    IntegrityMismatchError,
    PermanentWriteFailure,
    RecordNotFoundError,
    TierVaultError,
    VersionConflictError,
    classify_error,
)
from ..hot.base import DeleteOutcome, HotStore
from ..models import DEFAULT_COLD_PREFIX, ArchivalTask, Record, TaskState, compute_content_hash
from ..retry import RetryCoordinator
from ..state.ledger import TaskLedger

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ArchivalOutcome(Enum):
    """How a single archival run ended."""

    ARCHIVED = "archived"
    ALREADY_ARCHIVED = "already_archived"
    NOT_FOUND = "not_found"
    SUPERSEDED = "superseded"
    DEFERRED = "deferred"
    DEAD_LETTERED = "dead_lettered"
    INTERRUPTED = "interrupted"


@dataclass
class ArchivalResult:
    """Result of one archival run.

    Attributes:
        task: Task after the run (state reflects the ledger)
        outcome: How the run ended
        error: Error message if the run did not archive the record
    """

    task: ArchivalTask
    outcome: ArchivalOutcome
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.task.is_terminal


def _verify_classifier(error: BaseException) -> ErrorClass:
    # A just-written object that reads back as missing is treated as a
    # visibility lag, not a definitive miss.
    if isinstance(error, RecordNotFoundError):
        return ErrorClass.RETRYABLE
    return classify_error(error)


class Archiver:
    """Executes the write-verify-delete protocol per record.

    Attributes:
        hot: Hot store
        cold: Cold store
        ledger: Task ledger
        dead_letters: Dead-letter sink
        retry: Retry coordinator for store calls
        cold_prefix: Cold key prefix

    Example:
        >>> archiver = Archiver(hot, cold, ledger, dead_letters, retry)
        >>> result = await archiver.archive(ArchivalTask(ref=record.ref))
        >>> result.outcome
        <ArchivalOutcome.ARCHIVED: 'archived'>
    """

    def __init__(
        self,
        hot: HotStore,
        cold: ColdStore,
        ledger: TaskLedger,
        dead_letters: DeadLetterSink,
        retry: RetryCoordinator,
        cold_prefix: str = DEFAULT_COLD_PREFIX,
        hot_limiter: asyncio.Semaphore | None = None,
    ) -> None:
        """Initialize the archiver.

        Args:
            hot: Hot store to move records out of
            cold: Cold store to move records into
            ledger: Ledger persisting task state transitions
            dead_letters: Sink for permanently failed tasks
            retry: Retry coordinator applied to every store call
            cold_prefix: Cold key prefix
            hot_limiter: Semaphore bounding in-flight hot-store calls
        """
        self.hot = hot
        self.cold = cold
        self.ledger = ledger
        self.dead_letters = dead_letters
        self.retry = retry
        self.cold_prefix = cold_prefix
        self.hot_limiter = hot_limiter

        self._stopping = False
        self._stats: dict[str, int] = {outcome.value: 0 for outcome in ArchivalOutcome}

    def request_stop(self) -> None:
        """Ask in-flight runs to stop after their current step."""
        self._stopping = True

    def reset_stop(self) -> None:
        self._stopping = False

    @property
    def stopping(self) -> bool:
        return self._stopping

    async def archive(self, task: ArchivalTask) -> ArchivalResult:
        """Run the protocol for one task.

        If the ledger already holds a non-terminal entry for the record, the
        run resumes from that entry's state.

        Args:
            task: Task to execute

        Returns:
            ArchivalResult; fatal and exhausted errors are dead-lettered,
            never raised
        """
        task = await self.ledger.claim(task)
        result = await self._run(task)
        self._stats[result.outcome.value] += 1
        return result

    async def resume(self, task: ArchivalTask) -> ArchivalResult:
        """Re-drive a stale ledger task from its last known step."""
        logger.info(
            "Resuming archival task",
            extra={
                "record_id": task.ref.record_id,
                "partition_key": task.ref.partition_key,
                "state": task.state.value,
                "attempt": task.attempt,
            },
        )
        return await self.archive(task)

    async def _run(self, task: ArchivalTask) -> ArchivalResult:
        try:
            key = task.ref.cold_key(self.cold_prefix)
        except TierVaultError as e:
            return await self._dead_letter(task, e)

        # 1. load
        try:
            record = await self._hot_call(
                lambda: self.hot.get(task.ref.record_id, task.ref.partition_key),
                "hot.get",
            )
        except FinalError as e:
            if isinstance(e.last_error, RecordNotFoundError):
                return await self._resolve_missing(task, key)
            if e.retryable:
                return await self._defer(task, e)
            return await self._dead_letter(task, e.last_error)

        try:
            record.verify_hash()
        except TierVaultError as e:
            return await self._dead_letter(task, e)

        # 2-4. write + verify
        if task.state not in (TaskState.VERIFIED, TaskState.DELETING):
            if self._stopping:
                return self._interrupted(task)
            await self._transition(task, TaskState.WRITING)
            try:
                await self._write(key, record)
                await self._verify(key, record)
            except FinalError as e:
                if e.retryable:
                    failure = PermanentWriteFailure(
                        f"Cold write for {task.ref} failed after {e.attempts} attempts: "
                        f"{e.last_error}",
                        last_error=e.last_error,
                        attempts=e.attempts,
                    )
                    return await self._dead_letter(task, failure)
                return await self._dead_letter(task, e.last_error)
            await self._transition(task, TaskState.VERIFIED)
        else:
            try:
                await self._verify(key, record)
            except FinalError as e:
                if not e.retryable:
                    return await self._dead_letter(task, e.last_error)
                # The verified copy is unreadable for now: start over from write.
                await self._transition(task, TaskState.PENDING, str(e.last_error))
                return await self._defer(task, e)

        # 5. delete
        if self._stopping:
            return self._interrupted(task)
        await self._transition(task, TaskState.DELETING)
        return await self._delete(task, record)

    async def _resolve_missing(self, task: ArchivalTask, key: str) -> ArchivalResult:
        """Hot has no copy: either already archived or deleted by its owner."""
        try:
            in_cold = await self.retry.execute(lambda: self.cold.exists(key), op_name="cold.exists")
        except FinalError as e:
            if e.retryable:
                return await self._defer(task, e)
            return await self._dead_letter(task, e.last_error)

        outcome = ArchivalOutcome.ALREADY_ARCHIVED if in_cold else ArchivalOutcome.NOT_FOUND
        logger.debug(
            "Record absent from hot store",
            extra={"record_id": task.ref.record_id, "in_cold": in_cold},
        )
        await self._transition(task, TaskState.DONE)
        return ArchivalResult(task=task, outcome=outcome)

    async def _write(self, key: str, record: Record) -> None:
        metadata = {
            "content-hash": record.content_hash,
            "record-id": record.record_id,
            "partition-key": record.partition_key,
            "created-at": str(record.created_at),
        }

        async def write_once() -> bool:
            if await self.cold.exists(key):
                existing = await self.cold.read(key)
                actual = compute_content_hash(existing)
                if actual == record.content_hash:
                    return False
                raise IntegrityMismatchError(
                    f"Cold object at {key} has different content",
                    key=key,
                    expected=record.content_hash,
                    actual=actual,
                )
            await self.cold.write(key, record.payload, metadata)
            return True

        wrote = await self.retry.execute(write_once, op_name="cold.write")
        logger.debug(
            "Cold write complete",
            extra={"s3_key": key, "replayed": not wrote, "size_bytes": len(record.payload)},
        )

    async def _verify(self, key: str, record: Record) -> None:
        async def verify_once() -> None:
            data = await self.cold.read(key)
            actual = compute_content_hash(data)
            if actual != record.content_hash:
                raise IntegrityMismatchError(
                    f"Cold object at {key} failed verification",
                    key=key,
                    expected=record.content_hash,
                    actual=actual,
                )

        await self.retry.execute(verify_once, classify=_verify_classifier, op_name="cold.verify")

    async def _delete(self, task: ArchivalTask, record: Record) -> ArchivalResult:
        try:
            outcome = await self._hot_call(
                lambda: self.hot.delete_if_unchanged(
                    record.record_id, record.partition_key, record.version
                ),
                "hot.delete_if_unchanged",
            )
        except FinalError as e:
            if e.retryable:
                return await self._defer(task, e)
            return await self._dead_letter(task, e.last_error)

        if outcome == DeleteOutcome.VERSION_MISMATCH:
            conflict = VersionConflictError(
                f"Record {task.ref} changed during archival",
                expected_version=record.version,
            )
            logger.info(
                "Archival superseded by concurrent write",
                extra={"record_id": record.record_id, "error_code": conflict.code},
            )
            await self._transition(task, TaskState.DONE)
            return ArchivalResult(
                task=task, outcome=ArchivalOutcome.SUPERSEDED, error=str(conflict)
            )

        await self._transition(task, TaskState.DONE)
        logger.info(
            "Record archived",
            extra={
                "record_id": record.record_id,
                "partition_key": record.partition_key,
                "attempt": task.attempt,
                "hot_delete": outcome.value,
            },
        )
        return ArchivalResult(task=task, outcome=ArchivalOutcome.ARCHIVED)

    async def _hot_call(self, operation: Callable[[], Awaitable[T]], op_name: str) -> T:
        async def limited() -> T:
            async with AsyncExitStack() as stack:
                if self.hot_limiter is not None:
                    await stack.enter_async_context(self.hot_limiter)
                return await operation()

        return await self.retry.execute(limited, op_name=op_name)

    async def _transition(
        self, task: ArchivalTask, state: TaskState, error: str | None = None
    ) -> None:
        task.state = state
        task.last_error = error
        await self.ledger.save(task)

    async def _defer(self, task: ArchivalTask, error: FinalError) -> ArchivalResult:
        task.last_error = str(error.last_error)
        await self.ledger.save(task)
        logger.warning(
            "Archival deferred to reconciliation",
            extra={
                "record_id": task.ref.record_id,
                "state": task.state.value,
                "error": str(error.last_error),
            },
        )
        return ArchivalResult(task=task, outcome=ArchivalOutcome.DEFERRED, error=str(error))

    async def _dead_letter(self, task: ArchivalTask, error: BaseException) -> ArchivalResult:
        if isinstance(error, IntegrityMismatchError):
            logger.error(
                "Integrity mismatch between hot and cold copies",
                extra={
                    "alert": True,
                    "record_id": task.ref.record_id,
                    "partition_key": task.ref.partition_key,
                    **error.details,
                },
            )
        await self.dead_letters.enqueue(task, error)
        await self._transition(task, TaskState.DEAD_LETTERED, str(error))
        return ArchivalResult(task=task, outcome=ArchivalOutcome.DEAD_LETTERED, error=str(error))

    def _interrupted(self, task: ArchivalTask) -> ArchivalResult:
        logger.info(
            "Archival interrupted by shutdown",
            extra={"record_id": task.ref.record_id, "state": task.state.value},
        )
        return ArchivalResult(task=task, outcome=ArchivalOutcome.INTERRUPTED)

    @property
    def stats(self) -> dict[str, Any]:
        """Outcome counters since start."""
        return dict(self._stats)
