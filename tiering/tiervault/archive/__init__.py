"""
Archive module for TierVault.

This module moves records from the hot store to the cold store:
- Archiver: per-record write, verify, delete protocol
- ArchivalWorkerPool: bounded concurrency and graceful shutdown

Invariants:
    - Cold objects are written before, and verified before, hot deletion
    - Each record is archived with identical bytes (content hash checked)
    - Every step is idempotent and safe to replay
"""

from .archiver import ArchivalOutcome, ArchivalResult, Archiver
from .loop import ArchivalLoop, CycleReport
from .pool import ArchivalWorkerPool

__all__ = [
    "Archiver",
    "ArchivalOutcome",
    "ArchivalResult",
    "ArchivalWorkerPool",
    "ArchivalLoop",
    "CycleReport",
]
