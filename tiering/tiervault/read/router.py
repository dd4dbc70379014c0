"""
Tier-transparent read path.

Per request:

    ProbeHot ── found ──────────────────────────────▶ FOUND (hot)
       │ not found
       ▼
    ProbeCold ─ found ──────────────────────────────▶ FOUND (cold)
       │ not found ─────────────────────────────────▶ NOT_FOUND
    (transient error or timeout in either probe) ───▶ ERROR

Invariants:
    - The hot copy wins whenever it exists, even if a cold copy exists too
    - Only a definitive not-found from hot leads to the cold probe
    - A transient failure is never reported as NOT_FOUND
    - Each probe has its own timeout budget; a slow cold tier cannot hang
      the request past cold_timeout
    - Which tier failed, and why, is logged but not returned to callers
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum

from ..cold.base import ColdStore
from ..errors import FinalError, RecordNotFoundError, TierVaultError, error_code
from ..hot.base import HotStore
from ..models import DEFAULT_COLD_PREFIX, cold_key
from ..retry import RetryCoordinator

logger = logging.getLogger(__name__)


class ReadStatus(Enum):
    """Outcome of a read as seen by callers."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


class Tier(Enum):
    HOT = "hot"
    COLD = "cold"


@dataclass(frozen=True)
class ReadResult:
    """Result of a routed read.

    Attributes:
        status: FOUND, NOT_FOUND or ERROR
        payload: Record payload when FOUND
        tier: Tier that served the payload (internal; not exposed over HTTP)
    """

    status: ReadStatus
    payload: bytes | None = None
    tier: Tier | None = None

    @property
    def found(self) -> bool:
        return self.status == ReadStatus.FOUND


class _Miss(Exception):
    """Definitive not-found from a probe."""


class ReadRouter:
    """Serves reads by probing hot, then cold.

    Example:
        >>> router = ReadRouter(hot, cold, retry, hot_timeout=0.5, cold_timeout=5.0)
        >>> result = await router.read("inv-1", date(2024, 1, 5))
        >>> result.status
        <ReadStatus.FOUND: 'found'>
    """

    def __init__(
        self,
        hot: HotStore,
        cold: ColdStore,
        retry: RetryCoordinator,
        hot_timeout: float = 0.5,
        cold_timeout: float = 5.0,
        cold_prefix: str = DEFAULT_COLD_PREFIX,
    ) -> None:
        self.hot = hot
        self.cold = cold
        self.retry = retry
        self.hot_timeout = hot_timeout
        self.cold_timeout = cold_timeout
        self.cold_prefix = cold_prefix

    async def read(
        self,
        record_id: str,
        created_date: date,
        partition_key: str | None = None,
    ) -> ReadResult:
        """Locate a record in either tier.

        Args:
            record_id: Record identifier
            created_date: UTC creation date; must match the record's actual
                creation date or cold lookups will miss
            partition_key: Hot store partition key (defaults to record_id)

        Returns:
            ReadResult
        """
        partition_key = partition_key or record_id
        log_extra = {"record_id": record_id, "partition_key": partition_key}

        try:
            payload = await self._probe_hot(record_id, partition_key)
            return ReadResult(status=ReadStatus.FOUND, payload=payload, tier=Tier.HOT)
        except _Miss:
            pass
        except Exception as e:
            logger.warning(
                "Hot probe failed",
                extra={**log_extra, "tier": "hot", "error_code": error_code(_cause(e))},
            )
            return ReadResult(status=ReadStatus.ERROR)

        try:
            key = cold_key(created_date, record_id, self.cold_prefix)
        except TierVaultError:
            # An id that cannot form a cold key cannot have been archived.
            return ReadResult(status=ReadStatus.NOT_FOUND)

        try:
            payload = await self._probe_cold(key)
            return ReadResult(status=ReadStatus.FOUND, payload=payload, tier=Tier.COLD)
        except _Miss:
            logger.debug("Record absent from both tiers", extra=log_extra)
            return ReadResult(status=ReadStatus.NOT_FOUND)
        except Exception as e:
            logger.warning(
                "Cold probe failed",
                extra={
                    **log_extra,
                    "tier": "cold",
                    "s3_key": key,
                    "error_code": error_code(_cause(e)),
                },
            )
            return ReadResult(status=ReadStatus.ERROR)

    async def _probe_hot(self, record_id: str, partition_key: str) -> bytes:
        try:
            record = await asyncio.wait_for(
                self.retry.execute(
                    lambda: self.hot.get(record_id, partition_key),
                    op_name="hot.get",
                ),
                timeout=self.hot_timeout,
            )
        except FinalError as e:
            if isinstance(e.last_error, RecordNotFoundError):
                raise _Miss() from e
            raise
        return record.payload

    async def _probe_cold(self, key: str) -> bytes:
        async def probe() -> bytes:
            if not await self.cold.exists(key):
                raise RecordNotFoundError(f"Object not found in cold store: {key}", key=key)
            return await self.cold.read(key)

        try:
            return await asyncio.wait_for(
                self.retry.execute(probe, op_name="cold.read"),
                timeout=self.cold_timeout,
            )
        except FinalError as e:
            if isinstance(e.last_error, RecordNotFoundError):
                raise _Miss() from e
            raise


def _cause(error: BaseException) -> BaseException:
    return error.last_error if isinstance(error, FinalError) else error
