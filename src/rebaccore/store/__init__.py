"""Tuple storage backends.

Provides:
- ``TupleStore``: the storage contract (atomic batches, filtered reads).
- ``MemoryTupleStore``: in-process store.
- ``RedisTupleStore``: shared store (requires the ``redis`` extra).
- ``create_tuple_store()``: backend selection from AuthzConfig.
"""

from __future__ import annotations

from ..config import AuthzConfig, StoreBackend
from .base import TupleStore, check_batch
from .memory import MemoryTupleStore


def create_tuple_store(config: AuthzConfig) -> TupleStore:
    """Build the store selected by ``config.store_backend``.

    Redis keys live under ``config.namespace``, which includes the tenant,
    so tenants never read each other's tuples.
    """
    if config.store_backend == StoreBackend.REDIS:
        from .redis_store import RedisTupleStore

        return RedisTupleStore(
            config.redis_url,
            namespace=config.namespace,
            timeout=config.store_timeout_seconds,
        )
    return MemoryTupleStore()


__all__ = [
    "MemoryTupleStore",
    "TupleStore",
    "check_batch",
    "create_tuple_store",
]
