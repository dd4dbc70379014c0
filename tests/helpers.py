"""Shared helpers for TierVault tests."""

from tiering.tiervault.models import Record
from tiering.tiervault.retry import RetryCoordinator, RetryPolicy

# 2024-01-05T01:00:00Z
OLD_CREATED_AT = 1704416400000
OLD_DATE = "2024-01-05"
DAY_MS = 24 * 3600 * 1000


def cold_key_for(record_id: str, prefix: str = "records") -> str:
    return f"{prefix}/year=2024/month=01/day=05/{record_id}"


async def no_sleep(_delay: float) -> None:
    return None


def fast_retry(max_attempts: int = 3) -> RetryCoordinator:
    """Retry coordinator that never actually sleeps."""
    policy = RetryPolicy(max_attempts=max_attempts, base_delay=0.0, max_delay=0.0, max_elapsed=60.0)
    return RetryCoordinator(policy, sleep=no_sleep)


def old_record(record_id: str = "r1", payload: bytes = b"payload", **kwargs) -> Record:
    return Record.create(record_id, payload, created_at=OLD_CREATED_AT, **kwargs)
