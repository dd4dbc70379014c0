"""
CLI tools for TierVault administration.

This module provides command-line tools for:
- deadletter: List, reprocess and remove dead-lettered archival tasks

Invariants:
    - Tools work without a running server (they open the stores directly)
    - Reprocessing is idempotent and safe to re-run
"""

from .deadletter_cli import DeadLetterCLI, ReprocessReport

__all__ = ["DeadLetterCLI", "ReprocessReport"]
