"""
Bounded retry with exponential backoff and jitter.

RetryCoordinator is the only place where transient failures are retried.
Callers hand it an operation and a classifier; it either returns the
operation's result or raises FinalError.

Backoff uses "full jitter":

    delay = uniform(0, min(max_delay, base_delay * 2 ** (attempt - 1)))

Invariants:
    - A FATAL classification stops immediately (no sleep, no retry)
    - Never more than max_attempts calls of the operation
    - Never sleeps past max_elapsed measured from the first attempt
    - Cancellation propagates; it is never classified or retried
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .config import RetryConfig
from .errors import ErrorClass, FinalError, classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

Classifier = Callable[[BaseException], ErrorClass]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry limits.

    Attributes:
        max_attempts: Maximum calls of the operation
        base_delay: First backoff ceiling in seconds
        max_delay: Backoff ceiling in seconds
        max_elapsed: Total time budget in seconds
    """

    max_attempts: int = 5
    base_delay: float = 0.1
    max_delay: float = 10.0
    max_elapsed: float = 60.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_ms / 1000.0,
            max_delay=config.max_delay_ms / 1000.0,
            max_elapsed=config.max_elapsed_ms / 1000.0,
        )

    @classmethod
    def for_reads(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.read_max_attempts,
            base_delay=config.base_delay_ms / 1000.0,
            max_delay=config.max_delay_ms / 1000.0,
            max_elapsed=config.max_elapsed_ms / 1000.0,
        )


class RetryCoordinator:
    """Executes operations under a RetryPolicy.

    Example:
        >>> retry = RetryCoordinator(RetryPolicy(max_attempts=3))
        >>> data = await retry.execute(lambda: cold.read(key), op_name="cold.read")
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock

    def backoff(self, attempt: int) -> float:
        """Jittered delay after the given (1-based) failed attempt."""
        ceiling = min(self.policy.max_delay, self.policy.base_delay * (2 ** (attempt - 1)))
        return self._rng.uniform(0, ceiling)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        classify: Classifier = classify_error,
        op_name: str = "operation",
    ) -> T:
        """Run ``operation`` until it succeeds or retrying must stop.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            classify: Maps an exception to RETRYABLE or FATAL
            op_name: Name used in logs

        Returns:
            The operation's result

        Raises:
            FinalError: On a fatal error or when retries are exhausted
        """
        started = self._clock()
        attempt = 0

        while True:
            attempt += 1
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error_class = classify(e)

                if error_class == ErrorClass.FATAL:
                    raise FinalError(
                        f"{op_name} failed: {e}",
                        last_error=e,
                        attempts=attempt,
                        retryable=False,
                    ) from e

                if attempt >= self.policy.max_attempts:
                    logger.warning(
                        "Retries exhausted",
                        extra={"op": op_name, "attempts": attempt, "error": str(e)},
                    )
                    raise FinalError(
                        f"{op_name} failed after {attempt} attempts: {e}",
                        last_error=e,
                        attempts=attempt,
                        retryable=True,
                    ) from e

                delay = self.backoff(attempt)
                elapsed = self._clock() - started
                if elapsed + delay > self.policy.max_elapsed:
                    logger.warning(
                        "Retry time budget exhausted",
                        extra={"op": op_name, "attempts": attempt, "elapsed": elapsed},
                    )
                    raise FinalError(
                        f"{op_name} exceeded retry budget after {attempt} attempts: {e}",
                        last_error=e,
                        attempts=attempt,
                        retryable=True,
                    ) from e

                logger.debug(
                    "Retrying after transient error",
                    extra={"op": op_name, "attempt": attempt, "delay": delay, "error": str(e)},
                )
                await self._sleep(delay)
