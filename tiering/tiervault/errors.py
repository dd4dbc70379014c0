"""
Error taxonomy for TierVault.

Every failure raised by a store adapter is translated into one of these
types at the adapter boundary, so the rest of the engine never has to look
at backend-specific exceptions (botocore, sqlite3, ...).

- TierVaultError: Base exception
- RecordNotFoundError: Definitive not-found (drives tier fallback)
- TransientError: Retryable failures (ThrottledError, TransientNetworkError)
- MalformedPayloadError / IntegrityMismatchError: Fatal data errors
- PermissionDeniedError: Fatal auth errors
- VersionConflictError: Benign concurrent modification
- FinalError / PermanentWriteFailure: Raised once retrying is over

Invariants:
    - All errors inherit from TierVaultError
    - Classification depends only on the exception type
    - NotFound is never retried; callers interpret it
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Dict, Optional


class TierVaultError(Exception):
    """Base exception for all TierVault errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TIERVAULT_ERROR"
        self.details = details or {}


class RecordNotFoundError(TierVaultError):
    """Record or object does not exist in the probed tier.

    This is the expected signal for falling back from hot to cold,
    not a failure.
    """

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        super().__init__(message, code="NOT_FOUND", details={"key": key})
        self.key = key


class TransientError(TierVaultError):
    """Base for failures that may succeed when retried."""

    def __init__(self, message: str, code: str = "TRANSIENT", **details: Any) -> None:
        super().__init__(message, code=code, details=details)


class ThrottledError(TransientError):
    """Backend rejected the call because of rate limiting."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message, code="THROTTLED", **details)


class TransientNetworkError(TransientError):
    """Timeout, connection reset or 5xx from a backend."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message, code="TRANSIENT_NETWORK", **details)


class MalformedPayloadError(TierVaultError):
    """Record data is unusable (bad id, oversize payload, hash does not match payload)."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message, code="MALFORMED_PAYLOAD", details=details)


class IntegrityMismatchError(TierVaultError):
    """Cold copy content differs from the hot record.

    Indicates data corruption; always dead-lettered and alerted on.
    """

    def __init__(self, message: str, key: str, expected: str, actual: str) -> None:
        super().__init__(
            message,
            code="INTEGRITY_MISMATCH",
            details={"key": key, "expected": expected, "actual": actual},
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class PermissionDeniedError(TierVaultError):
    """Backend refused the call for authorization reasons."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message, code="PERMISSION_DENIED", details=details)


class VersionConflictError(TierVaultError):
    """Record changed between read and conditional delete."""

    def __init__(
        self, message: str, expected_version: int, actual_version: Optional[int] = None
    ) -> None:
        super().__init__(
            message,
            code="VERSION_CONFLICT",
            details={"expected_version": expected_version, "actual_version": actual_version},
        )
        self.expected_version = expected_version
        self.actual_version = actual_version


class FinalError(TierVaultError):
    """Raised by RetryCoordinator when an operation will not be retried further.

    Attributes:
        last_error: The exception raised by the final attempt
        attempts: Number of attempts made
        retryable: Whether the last error was retryable (i.e. retries ran out)
    """

    def __init__(
        self,
        message: str,
        last_error: BaseException,
        attempts: int,
        retryable: bool,
        code: str = "FINAL_ERROR",
    ) -> None:
        super().__init__(
            message,
            code=code,
            details={
                "attempts": attempts,
                "retryable": retryable,
                "last_error": str(last_error),
            },
        )
        self.last_error = last_error
        self.attempts = attempts
        self.retryable = retryable


class PermanentWriteFailure(FinalError):
    """Cold write or verify kept failing after exhausting retries."""

    def __init__(self, message: str, last_error: BaseException, attempts: int) -> None:
        super().__init__(
            message,
            last_error=last_error,
            attempts=attempts,
            retryable=True,
            code="PERMANENT_WRITE_FAILURE",
        )


class ErrorClass(Enum):
    """Retry classification of an error."""

    RETRYABLE = "retryable"
    FATAL = "fatal"


def classify_error(error: BaseException) -> ErrorClass:
    """Default classification table.

    Throttling and network failures are retried; everything else,
    including definitive not-found, stops retrying immediately.
    """
    if isinstance(error, TransientError):
        return ErrorClass.RETRYABLE
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorClass.RETRYABLE
    return ErrorClass.FATAL


def error_code(error: BaseException) -> str:
    """Stable code for logs and dead-letter entries."""
    if isinstance(error, TierVaultError):
        return error.code
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return "TIMEOUT"
    return type(error).__name__.upper()
