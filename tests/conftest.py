"""Shared fixtures for rebaccore tests."""

from __future__ import annotations

import asyncio

import pytest
from redis.exceptions import WatchError

from rebaccore import (
    AuthzConfig,
    Evaluator,
    MemoryTupleStore,
    MutationAPI,
    build_authorizer,
    default_schema,
)


class FakeAsyncRedis:
    """Minimal async Redis double: sets, MULTI/EXEC pipelines with WATCH, aclose."""

    def __init__(self) -> None:
        self.sets: dict[str, set[str]] = {}
        self.versions: dict[str, int] = {}
        self.executed_batches = 0
        self.closed = False

    async def smembers(self, key: str) -> set[str]:
        return set(self.sets.get(key, set()))

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)

    async def aclose(self) -> None:
        self.closed = True


class FakePipeline:
    """Buffers sadd/srem until execute; WATCH switches to immediate reads until multi()."""

    def __init__(self, redis: FakeAsyncRedis) -> None:
        self._redis = redis
        self._ops: list[tuple[str, str, str]] = []
        self._watched: dict[str, int] = {}

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.reset()

    async def reset(self) -> None:
        self._ops.clear()
        self._watched.clear()

    async def watch(self, *keys: str) -> None:
        self._watched = {key: self._redis.versions.get(key, 0) for key in keys}

    async def smembers(self, key: str) -> set[str]:
        members = set(self._redis.sets.get(key, set()))
        # Let a concurrent writer run between the read and the commit.
        await asyncio.sleep(0)
        return members

    def multi(self) -> None:
        pass

    def sadd(self, key: str, member: str) -> "FakePipeline":
        self._ops.append(("sadd", key, member))
        return self

    def srem(self, key: str, member: str) -> "FakePipeline":
        self._ops.append(("srem", key, member))
        return self

    async def execute(self) -> list[int]:
        if any(self._redis.versions.get(key, 0) != version for key, version in self._watched.items()):
            await self.reset()
            raise WatchError("Watched variable changed.")
        results = []
        for op, key, member in self._ops:
            bucket = self._redis.sets.setdefault(key, set())
            if op == "sadd":
                results.append(0 if member in bucket else 1)
                bucket.add(member)
            else:
                results.append(1 if member in bucket else 0)
                bucket.discard(member)
                if not bucket:
                    del self._redis.sets[key]
            if results[-1]:
                self._redis.versions[key] = self._redis.versions.get(key, 0) + 1
        self._redis.executed_batches += 1
        await self.reset()
        return results


@pytest.fixture
def schema():
    return default_schema()


@pytest.fixture
def store() -> MemoryTupleStore:
    return MemoryTupleStore()


@pytest.fixture
def evaluator(schema, store) -> Evaluator:
    return Evaluator(schema, store)


@pytest.fixture
def mutations(schema, store) -> MutationAPI:
    return MutationAPI(schema, store)


@pytest.fixture
def authz(schema, store):
    return build_authorizer(AuthzConfig(), schema=schema, store=store)


@pytest.fixture
def fake_redis() -> FakeAsyncRedis:
    return FakeAsyncRedis()
