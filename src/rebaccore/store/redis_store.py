"""Redis-backed tuple store.

Layout under the tenant namespace ``<prefix>:<tenant>``::

    <ns>:all               set of every tuple
    <ns>:obj:<object>      tuples whose object is <object>
    <ns>:sub:<subject>     tuples whose subject is <subject>
    <ns>:rel:<relation>    tuples with <relation>

Members are the canonical JSON form of a tuple (RelationTuple.key()).
Each batch is one MULTI/EXEC transaction, so all indexes change together.
A batch with ``keep`` guards WATCHes the guarded sets, re-reads them, and
retries when another writer commits in between.
Reads go to the endpoint in ``redis_url``; pointed at the primary, a
committed batch is visible to every process on its next read.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from ..exceptions import ConfigurationError, InvalidTupleError, StoreUnavailable, TupleConflict
from ..tuples import RelationTuple, TupleFilter
from .base import TupleStore, check_batch, check_keep

logger = logging.getLogger(__name__)

_UNAVAILABLE = (RedisConnectionError, RedisTimeoutError, OSError)

MAX_WATCH_RETRIES = 16


class RedisTupleStore(TupleStore):
    """Tuple store shared between processes through Redis."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        namespace: str = "rebac:default",
        timeout: float = 2.0,
        client: Any = None,
    ) -> None:
        """Initialize the store.

        Args:
            url: Redis URL; ignored when ``client`` is given.
            namespace: Key namespace (``<prefix>:<tenant>``).
            timeout: Socket and connect timeout in seconds.
            client: Pre-built ``redis.asyncio`` client.
        """
        if client is None:
            if not url:
                raise ConfigurationError("RedisTupleStore needs a redis_url or a client")
            client = aioredis.from_url(
                url,
                decode_responses=True,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
            )
        self._redis = client
        self.namespace = namespace

    def __repr__(self) -> str:
        return f"RedisTupleStore(namespace={self.namespace!r})"

    def _key(self, *parts: str) -> str:
        return ":".join((self.namespace, *parts))

    def _index_keys(self, t: RelationTuple) -> tuple[str, ...]:
        return (
            self._key("all"),
            self._key("obj", str(t.object)),
            self._key("sub", str(t.subject)),
            self._key("rel", t.relation.value),
        )

    def _read_key(self, tuple_filter: TupleFilter) -> str:
        if tuple_filter.object is not None:
            return self._key("obj", str(tuple_filter.object))
        if tuple_filter.subject is not None:
            return self._key("sub", str(tuple_filter.subject))
        if tuple_filter.relation is not None:
            return self._key("rel", tuple_filter.relation.value)
        return self._key("all")

    async def apply(
        self,
        writes: Sequence[RelationTuple] = (),
        deletes: Sequence[RelationTuple] = (),
        *,
        keep: Sequence[TupleFilter] = (),
    ) -> None:
        check_batch(writes, deletes)
        if not writes and not deletes:
            return
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for attempt in range(1, MAX_WATCH_RETRIES + 1):
                    try:
                        if keep:
                            await pipe.watch(*sorted({self._read_key(f) for f in keep}))
                            current = {f: await self._select(pipe, f) for f in keep}
                            check_keep(keep, current, writes, deletes)
                            pipe.multi()
                        self._queue(pipe, writes, deletes)
                        await pipe.execute()
                        break
                    except WatchError:
                        logger.debug("Guarded batch lost a race (attempt %d); retrying", attempt)
                else:
                    raise TupleConflict(
                        f"Guarded batch kept conflicting with concurrent writers after {MAX_WATCH_RETRIES} attempts",
                        namespace=self.namespace,
                    )
        except _UNAVAILABLE as e:
            logger.error("Tuple store write failed: %s", e)
            raise StoreUnavailable(f"Redis write failed: {e}", namespace=self.namespace) from e
        logger.debug("Applied batch: %d writes, %d deletes", len(writes), len(deletes))

    def _queue(self, pipe: Any, writes: Sequence[RelationTuple], deletes: Sequence[RelationTuple]) -> None:
        for t in deletes:
            member = t.key()
            for key in self._index_keys(t):
                pipe.srem(key, member)
        for t in writes:
            member = t.key()
            for key in self._index_keys(t):
                pipe.sadd(key, member)

    async def read(self, tuple_filter: TupleFilter) -> list[RelationTuple]:
        try:
            return await self._select(self._redis, tuple_filter)
        except _UNAVAILABLE as e:
            logger.error("Tuple store read failed: %s", e)
            raise StoreUnavailable(f"Redis read failed: {e}", namespace=self.namespace) from e

    async def _select(self, conn: Any, tuple_filter: TupleFilter) -> list[RelationTuple]:
        """Read through ``conn``: the client, or a pipeline in WATCH mode."""
        key = self._read_key(tuple_filter)
        result = []
        for member in await conn.smembers(key):
            try:
                t = RelationTuple.from_key(member)
            except InvalidTupleError as e:
                logger.warning("Skipping malformed tuple in %s: %s", key, e.message)
                continue
            if tuple_filter.matches(t):
                result.append(t)
        return sorted(result, key=str)

    async def close(self) -> None:
        await self._redis.aclose()


__all__ = ["RedisTupleStore"]
