"""
Read path for TierVault: locate a record in the hot or cold tier.
"""

from .router import ReadResult, ReadRouter, ReadStatus, Tier

__all__ = ["ReadRouter", "ReadResult", "ReadStatus", "Tier"]
