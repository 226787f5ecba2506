"""In-process tuple store."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Sequence

from ..tuples import EntityRef, Relation, RelationTuple, SubjectRef, TupleFilter
from .base import TupleStore, check_batch, check_keep

logger = logging.getLogger(__name__)


class MemoryTupleStore(TupleStore):
    """Tuple store held in process memory.

    Indexed by object, subject and relation. Mutations are serialised by an
    asyncio lock so every batch is linearizable; reads never block on it and
    always observe fully committed batches, since a batch is applied without
    yielding to the event loop.

    One instance holds one tenant's tuples.
    """

    def __init__(self) -> None:
        self._tuples: set[RelationTuple] = set()
        self._by_object: dict[EntityRef, set[RelationTuple]] = defaultdict(set)
        self._by_subject: dict[SubjectRef, set[RelationTuple]] = defaultdict(set)
        self._by_relation: dict[Relation, set[RelationTuple]] = defaultdict(set)
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._tuples)

    def _add(self, t: RelationTuple) -> bool:
        if t in self._tuples:
            return False
        self._tuples.add(t)
        self._by_object[t.object].add(t)
        self._by_subject[t.subject].add(t)
        self._by_relation[t.relation].add(t)
        return True

    def _discard(self, t: RelationTuple) -> bool:
        if t not in self._tuples:
            return False
        self._tuples.discard(t)
        for index, key in (
            (self._by_object, t.object),
            (self._by_subject, t.subject),
            (self._by_relation, t.relation),
        ):
            bucket = index.get(key)
            if bucket is not None:
                bucket.discard(t)
                if not bucket:
                    del index[key]
        return True

    async def apply(
        self,
        writes: Sequence[RelationTuple] = (),
        deletes: Sequence[RelationTuple] = (),
        *,
        keep: Sequence[TupleFilter] = (),
    ) -> None:
        check_batch(writes, deletes)
        async with self._lock:
            if keep:
                check_keep(keep, {f: self._select(f) for f in keep}, writes, deletes)
            deleted = sum(1 for t in deletes if self._discard(t))
            written = sum(1 for t in writes if self._add(t))
        logger.debug("Applied batch: %d written, %d deleted", written, deleted)

    async def read(self, tuple_filter: TupleFilter) -> list[RelationTuple]:
        return self._select(tuple_filter)

    def _select(self, tuple_filter: TupleFilter) -> list[RelationTuple]:
        if tuple_filter.object is not None:
            candidates = self._by_object.get(tuple_filter.object, ())
        elif tuple_filter.subject is not None:
            candidates = self._by_subject.get(tuple_filter.subject, ())
        elif tuple_filter.relation is not None:
            candidates = self._by_relation.get(tuple_filter.relation, ())
        else:
            candidates = self._tuples
        return sorted((t for t in candidates if tuple_filter.matches(t)), key=str)


__all__ = ["MemoryTupleStore"]
