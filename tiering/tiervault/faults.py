"""
Failure injection for the in-memory stores.

Used by tests and local development to simulate throttling, outages,
slow tiers and crash points without touching a real backend.

Example:
    >>> cold = InMemoryColdStore()
    >>> cold.faults.fail("write", ThrottledError("slow down"), times=2)
    >>> cold.faults.delay("read", 1.5)
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class _Failure:
    error: BaseException
    remaining: int | None  # None = forever


class FaultInjector:
    """Per-operation failure, latency and hook injection."""

    def __init__(self) -> None:
        self._failures: dict[str, list[_Failure]] = defaultdict(list)
        self._delays: dict[str, float] = {}
        self._hooks: dict[str, Callable[[], Awaitable[None]]] = {}
        self.calls: dict[str, int] = defaultdict(int)

    def fail(self, operation: str, error: BaseException, times: int | None = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error`` (None = always)."""
        self._failures[operation].append(_Failure(error, times))

    def delay(self, operation: str, seconds: float) -> None:
        """Add latency to every call of ``operation``."""
        self._delays[operation] = seconds

    def hook(self, operation: str, callback: Callable[[], Awaitable[None]]) -> None:
        """Await ``callback`` before the next call of ``operation`` proceeds."""
        self._hooks[operation] = callback

    def clear(self) -> None:
        self._failures.clear()
        self._delays.clear()
        self._hooks.clear()

    async def check(self, operation: str) -> None:
        """Apply injected behaviour for one call of ``operation``."""
        self.calls[operation] += 1

        hook = self._hooks.pop(operation, None)
        if hook is not None:
            await hook()

        seconds = self._delays.get(operation)
        if seconds:
            await asyncio.sleep(seconds)

        failures = self._failures.get(operation)
        if failures:
            failure = failures[0]
            if failure.remaining is not None:
                failure.remaining -= 1
                if failure.remaining <= 0:
                    failures.pop(0)
            logger.debug("Injected failure", extra={"operation": operation})
            raise failure.error
