"""Mutation API: validated, atomic tuple writes and deletes.

Every tuple is checked against the schema before it reaches storage:
computed relations (``can_*``) and subject types the rule does not admit
raise InvalidRelation. ``parent`` writes are also checked for cycles.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable, Optional, Sequence, Union

from .exceptions import InvalidRelation, ParentCycleError
from .logging import safe_preview
from .schema import Schema
from .store import TupleStore
from .tuples import EntityRef, Relation, RelationTuple, SubjectRef, TupleFilter, coerce_relation

logger = logging.getLogger(__name__)

SubjectLike = Union[str, SubjectRef, EntityRef]
EntityLike = Union[str, EntityRef]


class MutationAPI:
    """Schema-checked writes on top of a TupleStore."""

    def __init__(self, schema: Schema, store: TupleStore, *, max_depth: int = 32) -> None:
        self.schema = schema
        self.store = store
        self.max_depth = max_depth

    def _validated(self, t: RelationTuple) -> RelationTuple:
        self.schema.validate_tuple(t)
        return t

    def build(self, subject: SubjectLike, relation: Union[str, Relation], obj: EntityLike) -> RelationTuple:
        """Build and validate a tuple. Raises InvalidRelation."""
        return self._validated(RelationTuple.of(subject, relation, obj))

    async def read(self, tuple_filter: TupleFilter) -> list[RelationTuple]:
        return await self.store.read(tuple_filter)

    # ── Single-tuple operations ─────────────────────────

    async def grant(self, subject: SubjectLike, relation: Union[str, Relation], obj: EntityLike) -> RelationTuple:
        """Write one tuple. Granting an existing tuple is a no-op."""
        t = self.build(subject, relation, obj)
        await self.apply(writes=[t])
        return t

    async def revoke(
        self,
        subject: SubjectLike,
        relation: Union[str, Relation],
        obj: EntityLike,
        *,
        keep_one: bool = False,
    ) -> RelationTuple:
        """Delete one tuple. Idempotent.

        Args:
            keep_one: Refuse with OwnershipError if this is the last tuple
                of ``relation`` on ``obj`` (used for owners). Checked
                atomically with the delete.
        """
        t = self.build(subject, relation, obj)
        keep = [TupleFilter(relation=t.relation, object=t.object)] if keep_one else []
        await self.apply(deletes=[t], keep=keep)
        return t

    async def replace(
        self,
        relation: Union[str, Relation],
        obj: EntityLike,
        subject: Optional[SubjectLike],
    ) -> list[RelationTuple]:
        """Atomically replace every ``(?, relation, obj)`` tuple by one for ``subject``.

        With ``subject=None`` all such tuples are removed; owners can never
        be cleared this way. Used for moves (``parent``) and ownership
        transfer (``owner``).

        Returns:
            The tuples that were removed.
        """
        entity = obj if isinstance(obj, EntityRef) else EntityRef.parse(obj)
        rel = coerce_relation(relation)
        writes = [self.build(subject, rel, entity)] if subject is not None else []
        current = await self.store.read(TupleFilter(relation=rel, object=entity))
        deletes = [t for t in current if t not in writes]
        keep = [TupleFilter(relation=rel, object=entity)] if rel == Relation.OWNER else []
        await self.apply(writes=writes, deletes=deletes, keep=keep)
        return deletes

    # ── Batches ─────────────────────────────────────────

    async def write(self, tuples: Sequence[RelationTuple]) -> None:
        await self.apply(writes=tuples)

    async def delete(self, tuples: Sequence[RelationTuple]) -> None:
        await self.apply(deletes=tuples)

    async def apply(
        self,
        writes: Sequence[RelationTuple] = (),
        deletes: Sequence[RelationTuple] = (),
        *,
        keep: Sequence[TupleFilter] = (),
    ) -> None:
        """Validate and commit writes and deletes as one atomic batch.

        ``keep`` names tuple sets the batch must not empty (see TupleStore.apply).
        """
        writes = [self._validated(t) for t in writes]
        deletes = [self._validated(t) for t in deletes]
        await self._reject_parent_cycles(writes, deletes)
        await self.store.apply(writes=writes, deletes=deletes, keep=keep)
        logger.debug(
            "Committed %d write(s), %d delete(s)",
            len(writes),
            len(deletes),
            extra={"writes": safe_preview([str(t) for t in writes]), "deletes": safe_preview([str(t) for t in deletes])},
        )

    async def cascade_delete_object(self, obj: EntityLike) -> list[RelationTuple]:
        """Delete every tuple that mentions ``obj`` in one batch.

        Covers ``obj`` as the object, as a plain subject (e.g. a folder as
        ``parent`` of its children) and as a userset subject
        (``group:G#member`` grants). Must run whenever a document, folder or
        group is destroyed so a recycled id starts clean.

        Raises:
            OwnershipError: ``obj`` is the last owner of another object
                (e.g. a group owning a folder). Nothing is deleted.

        Returns:
            The deleted tuples.
        """
        entity = obj if isinstance(obj, EntityRef) else EntityRef.parse(obj)
        filters = [TupleFilter(object=entity), TupleFilter(subject=SubjectRef(entity))]
        filters.extend(
            TupleFilter(subject=SubjectRef(entity, relation))
            for subject_type, relation in sorted(self.schema.userset_relations(), key=str)
            if subject_type == entity.type
        )

        doomed: set[RelationTuple] = set()
        for tuple_filter in filters:
            doomed.update(await self.store.read(tuple_filter))

        ordered = sorted(doomed, key=str)
        owned_elsewhere = sorted(
            {t.object for t in ordered if t.relation == Relation.OWNER and t.object != entity}, key=str
        )
        keep = [TupleFilter(relation=Relation.OWNER, object=o) for o in owned_elsewhere]
        if ordered:
            # Stored data is deleted as found; no schema validation on the way out.
            await self.store.apply(deletes=ordered, keep=keep)
        logger.info("Cascade-deleted %d tuple(s) for %s", len(ordered), entity)
        return ordered

    # ── Parent cycle guard ──────────────────────────────

    async def _reject_parent_cycles(
        self,
        writes: Iterable[RelationTuple],
        deletes: Iterable[RelationTuple],
    ) -> None:
        parent_writes = [t for t in writes if t.relation == Relation.PARENT]
        if not parent_writes:
            return

        removed = set(deletes)
        added: dict[EntityRef, set[EntityRef]] = defaultdict(set)
        for t in parent_writes:
            added[t.object].add(t.subject.entity)

        for t in parent_writes:
            if await self._reaches(t.subject.entity, t.object, removed, added):
                raise ParentCycleError(
                    f"{t.subject.entity} is {t.object} or one of its descendants",
                    tuple=t.to_wire(),
                )

    async def _reaches(
        self,
        start: EntityRef,
        target: EntityRef,
        removed: set[RelationTuple],
        added: dict[EntityRef, set[EntityRef]],
    ) -> bool:
        """True if ``target`` is ``start`` or one of its ancestors after the batch."""
        seen: set[EntityRef] = set()
        frontier = {start}
        level = 0
        while frontier:
            if target in frontier:
                return True
            level += 1
            if level > self.max_depth:
                raise InvalidRelation(
                    f"Parent chain above {start} exceeds {self.max_depth} levels",
                    object=str(start),
                )
            seen |= frontier
            above: set[EntityRef] = set()
            for node in frontier:
                for t in await self.store.read(TupleFilter(relation=Relation.PARENT, object=node)):
                    if t not in removed and not t.subject.is_userset:
                        above.add(t.subject.entity)
                above |= added.get(node, set())
            frontier = above - seen
        return False


__all__ = ["MutationAPI"]
