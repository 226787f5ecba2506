"""Tuple store contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Mapping, Sequence

from ..exceptions import OwnershipError, TupleConflict
from ..tuples import RelationTuple, TupleFilter


class TupleStore(ABC):
    """Durable, indexed storage of relationship tuples.

    Guarantees:
    - Tuples are unique on ``(subject, relation, object)``; rewriting is a no-op.
    - ``apply`` commits writes and deletes as one atomic batch.
    - ``keep`` filters are checked in the same atomic step as the commit.
    - Deleting an absent tuple is a no-op.
    - A caller sees its own committed batches on the next read.

    Implementations raise StoreUnavailable when the backend is unreachable.
    """

    @abstractmethod
    async def apply(
        self,
        writes: Sequence[RelationTuple] = (),
        deletes: Sequence[RelationTuple] = (),
        *,
        keep: Sequence[TupleFilter] = (),
    ) -> None:
        """Commit one batch.

        Args:
            writes: Tuples to add.
            deletes: Tuples to remove.
            keep: Tuple sets the batch may shrink but must not empty,
                e.g. ``TupleFilter(relation=OWNER, object=doc)``.

        Raises:
            TupleConflict: A tuple is both written and deleted.
            OwnershipError: The batch would empty a ``keep`` set.
        """
        raise NotImplementedError

    @abstractmethod
    async def read(self, tuple_filter: TupleFilter) -> list[RelationTuple]:
        raise NotImplementedError

    async def write(self, tuples: Sequence[RelationTuple]) -> None:
        await self.apply(writes=tuples)

    async def delete(self, tuples: Sequence[RelationTuple]) -> None:
        await self.apply(deletes=tuples)

    async def exists(self, t: RelationTuple) -> bool:
        found = await self.read(TupleFilter(subject=t.subject, relation=t.relation, object=t.object))
        return bool(found)

    async def close(self) -> None:
        return None


def check_batch(writes: Iterable[RelationTuple], deletes: Iterable[RelationTuple]) -> None:
    """Reject a batch that writes and deletes the same tuple."""
    overlap = set(writes) & set(deletes)
    if overlap:
        raise TupleConflict(
            f"{len(overlap)} tuple(s) both written and deleted in one batch",
            tuples=sorted(str(t) for t in overlap),
        )


def check_keep(
    keep: Iterable[TupleFilter],
    current: Mapping[TupleFilter, Iterable[RelationTuple]],
    writes: Iterable[RelationTuple],
    deletes: Iterable[RelationTuple],
) -> None:
    """Raise OwnershipError if the batch removes the last tuple of a ``keep`` set.

    A set the batch does not delete from is left alone, so revoking an
    absent tuple stays a no-op.
    """
    removed = set(deletes)
    written = list(writes)
    for tuple_filter in keep:
        before = set(current[tuple_filter])
        if not before & removed:
            continue
        after = (before - removed) | {t for t in written if tuple_filter.matches(t)}
        if not after:
            relation = tuple_filter.relation.value if tuple_filter.relation else "tuple"
            raise OwnershipError(
                f"Cannot remove the last {relation} of {tuple_filter.object}",
                object=str(tuple_filter.object),
            )


__all__ = ["TupleStore", "check_batch", "check_keep"]
