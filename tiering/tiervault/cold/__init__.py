"""
Cold store abstraction for TierVault.

This module provides a pluggable cold store interface supporting:
- S3 / MinIO via aiobotocore (production)
- Local filesystem (development, single node)
- In-memory (for testing)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import ColdStore
from .local import LocalColdStore
from .memory import InMemoryColdStore
from .s3 import S3ColdStore, translate_client_error

if TYPE_CHECKING:
    from ..config import ServerConfig

__all__ = [
    "ColdStore",
    "S3ColdStore",
    "LocalColdStore",
    "InMemoryColdStore",
    "translate_client_error",
    "create_cold_store",
]


def create_cold_store(config: "ServerConfig") -> ColdStore:
    """Factory function to create a cold store from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate ColdStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import ColdBackend

    if config.cold_backend == ColdBackend.S3:
        return S3ColdStore(config.s3)
    elif config.cold_backend == ColdBackend.LOCAL:
        return LocalColdStore(config.local_cold.root_dir)
    else:
        raise ValueError(f"Unsupported cold backend: {config.cold_backend}")
