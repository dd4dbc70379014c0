"""
In-memory cold store implementation for testing.

Invariants:
    - All data is lost on process exit
    - Same not-found semantics as the S3 and filesystem stores

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with ColdStore protocol
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from ..errors import RecordNotFoundError
from ..faults import FaultInjector

logger = logging.getLogger(__name__)


class InMemoryColdStore:
    """In-memory implementation of ColdStore for testing.

    Injected faults apply per operation name: ``exists``, ``read``, ``write``.

    Example:
        >>> cold = InMemoryColdStore()
        >>> await cold.write("records/year=2024/month=01/day=05/r1", b"data")
        >>> cold.faults.fail("write", ThrottledError("slow down"), times=None)
    """

    def __init__(self) -> None:
        self._objects: Dict[str, bytes] = {}
        self._metadata: Dict[str, Dict[str, str]] = {}
        self.write_count = 0
        self.faults = FaultInjector()

    async def exists(self, key: str) -> bool:
        await self.faults.check("exists")
        return key in self._objects

    async def read(self, key: str) -> bytes:
        await self.faults.check("read")
        try:
            return self._objects[key]
        except KeyError:
            raise RecordNotFoundError(f"Object not found in cold store: {key}", key=key)

    async def write(
        self,
        key: str,
        data: bytes,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        await self.faults.check("write")
        self._objects[key] = bytes(data)
        self._metadata[key] = dict(metadata or {})
        self.write_count += 1

    # Testing helpers

    def contains(self, key: str) -> bool:
        return key in self._objects

    def get_raw(self, key: str) -> bytes:
        return self._objects[key]

    def put_raw(self, key: str, data: bytes) -> None:
        """Place an object directly, bypassing faults and counters."""
        self._objects[key] = data

    def metadata(self, key: str) -> Dict[str, str]:
        return self._metadata.get(key, {})

    def keys(self) -> List[str]:
        return sorted(self._objects)
