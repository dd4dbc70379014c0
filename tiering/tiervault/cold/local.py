"""
Filesystem cold store for TierVault.

Lays objects out under a root directory using the same hierarchical key
as S3, so a local archive can be synced to a bucket as-is:

    <root_dir>/<prefix>/year=YYYY/month=MM/day=DD/<record_id>
    <root_dir>/_meta/<prefix>/year=YYYY/month=MM/day=DD/<record_id>.json

Invariants:
    - Writes are atomic (temp file + rename), so a crash never leaves a
      partially written object at the final path
    - Keys cannot escape root_dir
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path

from ..errors import MalformedPayloadError, RecordNotFoundError

logger = logging.getLogger(__name__)

_META_DIR = "_meta"


class LocalColdStore:
    """Cold store backed by a local directory tree.

    Example:
        >>> cold = LocalColdStore("/var/lib/tiervault/cold")
        >>> await cold.write("records/year=2024/month=01/day=05/inv-1", b"...")
    """

    def __init__(self, root_dir: str) -> None:
        self.root_dir = Path(root_dir).resolve()

    def _path_for(self, key: str, meta: bool = False) -> Path:
        relative = Path(_META_DIR, f"{key}.json") if meta else Path(key)
        path = (self.root_dir / relative).resolve()
        if self.root_dir not in path.parents:
            raise MalformedPayloadError(f"Key escapes cold store root: {key!r}", key=key)
        return path

    async def exists(self, key: str) -> bool:
        return self._path_for(key).is_file()

    async def read(self, key: str) -> bytes:
        path = self._path_for(key)
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, path.read_bytes)
        except FileNotFoundError as e:
            raise RecordNotFoundError(f"Object not found in cold store: {key}", key=key) from e

    async def write(
        self,
        key: str,
        data: bytes,
        metadata: dict[str, str] | None = None,
    ) -> None:
        path = self._path_for(key)
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self._atomic_write, path, data)
        if metadata:
            meta_path = self._path_for(key, meta=True)
            encoded = json.dumps(metadata, sort_keys=True).encode("utf-8")
            await loop.run_in_executor(None, self._atomic_write, meta_path, encoded)
        logger.debug("Wrote cold object", extra={"path": str(path), "size_bytes": len(data)})

    @staticmethod
    def _atomic_write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def read_metadata(self, key: str) -> dict[str, str]:
        """Read the metadata sidecar written with the object."""
        meta_path = self._path_for(key, meta=True)
        try:
            return json.loads(meta_path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise RecordNotFoundError(f"No metadata for cold object: {key}", key=key) from e
