"""
Dead-letter CLI tool for TierVault.

This tool lets an operator inspect and reprocess permanently failed
archival tasks:
- list: Print dead-letter entries as JSON
- reprocess: Re-run the archival protocol for dead-lettered records
- remove: Drop an entry without reprocessing

Usage:
    tiervault-deadletter list [--limit N]
    tiervault-deadletter reprocess [--limit N] [--record-id ID [--partition-key PK]] [--dry-run]
    tiervault-deadletter remove --record-id ID [--partition-key PK]

The tool reads the same environment variables as the server (see
config.py), so it talks to the same hot, cold and control stores.

Invariants:
    - An entry is removed only after its record reached a terminal,
      non-dead-lettered outcome
    - A record that fails again stays in the sink with updated error data
    - Reprocessing uses the server's write-verify-delete protocol unchanged

How to change safely:
    - Keep the list output format stable; operators script against it
    - Add commands, don't modify existing ones
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from typing import Any

from ..archive.archiver import ArchivalOutcome, Archiver
from ..cold import ColdStore, S3ColdStore, create_cold_store
from ..config import ServerConfig
from ..deadletter import DeadLetterSink
from ..hot import SqliteHotStore
from ..models import ArchivalTask, DeadLetterEntry
from ..retry import RetryCoordinator, RetryPolicy
from ..state import ControlStore, TaskLedger

logger = logging.getLogger(__name__)


@dataclass
class ReprocessReport:
    """Result of a reprocess run.

    Attributes:
        processed: Entries handed to the archiver
        resolved: Entries whose record reached a terminal outcome (removed)
        failed: Entries that failed again (kept)
        outcomes: Outcome per record id
    """

    processed: int = 0
    resolved: int = 0
    failed: int = 0
    outcomes: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "resolved": self.resolved,
            "failed": self.failed,
            "outcomes": self.outcomes,
        }


class DeadLetterCLI:
    """CLI tool for dead-letter management.

    Example:
        >>> cli = DeadLetterCLI(sink, archiver)
        >>> entries = await cli.list(limit=10)
        >>> report = await cli.reprocess(limit=10)
    """

    def __init__(self, sink: DeadLetterSink, archiver: Archiver | None = None) -> None:
        self.sink = sink
        self.archiver = archiver

    async def list(self, limit: int = 100) -> list[DeadLetterEntry]:
        return await self.sink.list(limit=limit)

    async def reprocess(
        self,
        limit: int = 100,
        record_id: str | None = None,
        partition_key: str | None = None,
        dry_run: bool = False,
    ) -> ReprocessReport:
        """Re-run archival for dead-lettered records.

        Args:
            limit: Maximum entries to reprocess (oldest first)
            record_id: Only reprocess this record (limit does not apply)
            partition_key: Partition of record_id (defaults to the id)
            dry_run: Report what would be reprocessed without running it

        Returns:
            ReprocessReport
        """
        if self.archiver is None:
            raise ValueError("reprocess requires an archiver")

        if record_id is not None:
            entry = await self.sink.find(record_id, partition_key)
            entries = [entry] if entry is not None else []
        else:
            entries = await self.sink.drain_for_reprocessing(limit=limit)

        report = ReprocessReport()
        for entry in entries:
            report.processed += 1
            if dry_run:
                report.outcomes[entry.ref.record_id] = "dry_run"
                continue

            result = await self.archiver.archive(ArchivalTask(ref=entry.ref))
            report.outcomes[entry.ref.record_id] = result.outcome.value

            if result.is_terminal and result.outcome != ArchivalOutcome.DEAD_LETTERED:
                await self.sink.remove(entry.ref.record_id, entry.ref.partition_key)
                report.resolved += 1
            else:
                report.failed += 1
                logger.warning(
                    "Dead letter reprocessing did not resolve record",
                    extra={
                        "record_id": entry.ref.record_id,
                        "outcome": result.outcome.value,
                        "error": result.error,
                    },
                )
        return report

    async def remove(self, record_id: str, partition_key: str | None = None) -> bool:
        return await self.sink.remove(record_id, partition_key)


async def _open_stores(config: ServerConfig) -> tuple[ControlStore, SqliteHotStore, ColdStore]:
    control = ControlStore(config.control.db_path, busy_timeout_ms=config.hot.busy_timeout_ms)
    await control.initialize()
    hot = SqliteHotStore(
        data_dir=config.hot.data_dir,
        db_name=config.hot.db_name,
        wal_mode=config.hot.wal_mode,
        busy_timeout_ms=config.hot.busy_timeout_ms,
    )
    await hot.initialize()
    cold = create_cold_store(config)
    if isinstance(cold, S3ColdStore):
        await cold.connect()
    return control, hot, cold


async def _run(args: argparse.Namespace, config: ServerConfig) -> int:
    control, hot, cold = await _open_stores(config)
    sink = DeadLetterSink(control)
    archiver = Archiver(
        hot=hot,
        cold=cold,
        ledger=TaskLedger(control),
        dead_letters=sink,
        retry=RetryCoordinator(RetryPolicy.from_config(config.retry)),
        cold_prefix=config.cold_prefix,
    )
    cli = DeadLetterCLI(sink, archiver)

    try:
        if args.command == "list":
            entries = await cli.list(limit=args.limit)
            print(json.dumps([e.to_dict() for e in entries], indent=2, sort_keys=True))
            return 0

        if args.command == "reprocess":
            report = await cli.reprocess(
                limit=args.limit,
                record_id=args.record_id,
                partition_key=args.partition_key,
                dry_run=args.dry_run,
            )
            print(json.dumps(report.to_dict(), indent=2, sort_keys=True))
            return 1 if report.failed else 0

        if args.command == "remove":
            removed = await cli.remove(args.record_id, args.partition_key)
            if removed:
                print(f"Removed dead letter for {args.record_id}")
                return 0
            print(f"No dead letter for {args.record_id}", file=sys.stderr)
            return 1

        return 2
    finally:
        if isinstance(cold, S3ColdStore):
            await cold.close()


def main() -> None:
    """CLI entry point for dead-letter tool."""
    parser = argparse.ArgumentParser(description="TierVault dead-letter management tool")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # list command
    list_parser = subparsers.add_parser("list", help="List dead-letter entries as JSON")
    list_parser.add_argument("--limit", type=int, default=100, help="Maximum entries")

    # reprocess command
    reprocess_parser = subparsers.add_parser("reprocess", help="Re-run archival for entries")
    reprocess_parser.add_argument("--limit", type=int, default=100, help="Maximum entries")
    reprocess_parser.add_argument("--record-id", help="Only reprocess this record")
    reprocess_parser.add_argument("--partition-key", help="Partition key (defaults to record ID)")
    reprocess_parser.add_argument("--dry-run", action="store_true", help="Don't make changes")

    # remove command
    remove_parser = subparsers.add_parser("remove", help="Drop an entry without reprocessing")
    remove_parser.add_argument("--record-id", required=True, help="Record ID")
    remove_parser.add_argument("--partition-key", help="Partition key (defaults to record ID)")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(asyncio.run(_run(args, config)))


if __name__ == "__main__":
    main()
