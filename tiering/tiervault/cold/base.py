"""
Base protocol for the cold (archival) store.

The cold store is addressed purely by the deterministic key built in
models.cold_key(). Objects hold the record payload bytes unchanged.

Invariants:
    - write() is overwrite-safe: writing identical bytes twice is a no-op
    - read() raises RecordNotFoundError on a definitive miss
    - Throttling and network failures surface as TransientError subclasses
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Dict, Optional, Protocol, runtime_checkable


@runtime_checkable
class ColdStore(Protocol):
    """Protocol for cold store backends."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether an object exists at ``key``."""
        ...

    @abstractmethod
    async def read(self, key: str) -> bytes:
        """Read the object at ``key``.

        Raises:
            RecordNotFoundError: If no object exists at the key
        """
        ...

    @abstractmethod
    async def write(
        self,
        key: str,
        data: bytes,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        """Write ``data`` at ``key``, replacing any existing object."""
        ...
