"""
TierVault - hot/cold record tiering with transparent reads.

This package moves aging records from a low-latency transactional store
(hot) to a cheap archival store (cold) without clients being able to
observe the migration:
- Change feed cursor as the source of archival candidates
- Write-then-verify-then-delete protocol per record
- Read router that probes hot, then falls back to cold
- Reconciliation sweep that heals interrupted archivals

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌─────────────────┐
    │ Hot store   │────▶│ ChangeCursor │────▶│ ArchivalTrigger │
    │ (SQLite)    │     └──────────────┘     └────────┬────────┘
    └──────▲──────┘                                   │
           │                                          ▼
           │  delete-if-unchanged          ┌─────────────────────┐
           └───────────────────────────────│ Worker pool/Archiver│
                                           └──────────┬──────────┘
                                   write+verify       │ permanent failure
                        ┌─────────────────────────────┼──────────────┐
                        ▼                             ▼              │
                   ┌─────────┐                 ┌────────────┐        │
                   │ Cold    │                 │ DeadLetter │◀───────┘
                   │ (S3)    │                 │ sink       │
                   └─────────┘                 └────────────┘

Invariants:
    - A created record is always readable from at least one tier
    - Hot deletion never precedes a verified cold write
    - Payload bytes and content hash never change in transit
    - Every archival step is idempotent and safe to replay

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
