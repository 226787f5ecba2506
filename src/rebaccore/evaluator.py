"""Authorization evaluator: Check and ListObjects over the tuple graph.

``check(subject, relation, object)`` evaluates the schema's rewrite rule for
``relation`` on the object's type as a union of terms:

1. direct tuples, including userset subjects such as ``group:eng#member``
   which recurse into a membership check;
2. computed relations on the same object;
3. hops along structural edges (``parent``) to the related objects.

Union branches run as concurrent tasks and the first ``True`` cancels the
rest. One resolution context per call carries the depth cap and the dispatch
budget through every branch, so wide fan-out cannot multiply the work.
Hitting either limit denies that branch and logs a warning; it never raises.

``list_objects`` walks the graph backward from the subject and confirms every
candidate with ``check``, so the two operations always agree.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Awaitable, Callable, Iterable, Optional, Union

from .config import AuthzConfig
from .exceptions import DepthExceeded, InvalidTupleError
from .schema import Hop, RelationRule, Schema
from .store import TupleStore
from .tuples import (
    EntityRef,
    ObjectType,
    Relation,
    SubjectRef,
    TupleFilter,
    coerce_relation,
    coerce_type,
)

logger = logging.getLogger(__name__)

Branch = Callable[[], Awaitable[bool]]

DEFAULT_MAX_DEPTH = 32
DEFAULT_MAX_DISPATCHES = 2000
DEFAULT_MAX_CONCURRENCY = 16


@dataclass
class _Resolution:
    """Limits shared by every branch of one call."""

    max_depth: int
    max_dispatches: int
    dispatches: int = 0
    truncated: bool = False

    def enter(self, depth: int) -> None:
        if depth > self.max_depth:
            self.truncated = True
            raise DepthExceeded(depth=depth, limit=self.max_depth)
        self.dispatches += 1
        if self.dispatches > self.max_dispatches:
            self.truncated = True
            raise DepthExceeded("Dispatch budget exhausted", dispatches=self.dispatches)


class Evaluator:
    """Answers permission questions against a schema and a tuple store.

    Stateless per call; safe to share across concurrent requests.
    """

    def __init__(
        self,
        schema: Schema,
        store: TupleStore,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        max_dispatches: int = DEFAULT_MAX_DISPATCHES,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> None:
        if max_depth < 1:
            raise ValueError("max_depth must be >= 1")
        self.schema = schema
        self.store = store
        self.max_depth = max_depth
        self.max_dispatches = max_dispatches
        self._reads = asyncio.Semaphore(max_concurrency)
        self._usersets = schema.userset_relations()

    @classmethod
    def from_config(cls, schema: Schema, store: TupleStore, config: AuthzConfig) -> "Evaluator":
        return cls(
            schema,
            store,
            max_depth=config.max_depth,
            max_dispatches=config.max_dispatches,
            max_concurrency=config.max_concurrency,
        )

    def _resolution(self) -> _Resolution:
        return _Resolution(max_depth=self.max_depth, max_dispatches=self.max_dispatches)

    async def _read(self, tuple_filter: TupleFilter):
        async with self._reads:
            return await self.store.read(tuple_filter)

    # ── Check ───────────────────────────────────────────

    async def check(
        self,
        subject: Union[str, SubjectRef, EntityRef],
        relation: Union[str, Relation],
        obj: Union[str, EntityRef],
    ) -> bool:
        """Return True if ``subject`` holds ``relation`` on ``obj``.

        Unknown objects, unknown relations and malformed references answer
        False. Only StoreUnavailable propagates.
        """
        try:
            subject_ref = SubjectRef.of(subject)
            relation_ref = coerce_relation(relation)
            object_ref = obj if isinstance(obj, EntityRef) else EntityRef.parse(obj)
        except InvalidTupleError as e:
            logger.warning("Denying check with malformed arguments: %s", e.message)
            return False

        res = self._resolution()
        try:
            allowed = await self._check(subject_ref, relation_ref, object_ref, res, 0, frozenset())
        except DepthExceeded:
            allowed = False

        if res.truncated and not allowed:
            logger.warning(
                "Check %s#%s@%s hit resolution limit (depth=%d, dispatches=%d); denying",
                object_ref,
                relation_ref.value,
                subject_ref,
                self.max_depth,
                res.dispatches,
            )
        logger.debug("check %s#%s@%s -> %s", object_ref, relation_ref.value, subject_ref, allowed)
        return allowed

    async def _check(
        self,
        subject: SubjectRef,
        relation: Relation,
        obj: EntityRef,
        res: _Resolution,
        depth: int,
        path: frozenset,
    ) -> bool:
        res.enter(depth)

        # A userset always contains itself.
        if subject.relation == relation and subject.entity == obj:
            return True

        node = (relation, obj)
        if node in path:
            logger.debug("Cycle at %s#%s; branch denied", obj, relation.value)
            return False

        rule = self.schema.rule(obj.type, relation)
        if rule is None:
            logger.warning("No rule for %s#%s; denying", obj.type.value, relation.value)
            return False

        path = path | {node}
        branches: list[Branch] = []
        if rule.direct is not None:
            branches.append(partial(self._check_direct, subject, relation, obj, rule, res, depth, path))
        for computed in rule.computed:
            branches.append(partial(self._check, subject, computed, obj, res, depth + 1, path))
        for hop in rule.inherited:
            branches.append(partial(self._check_hop, subject, hop, obj, res, depth, path))
        return await self._any(branches)

    async def _check_direct(
        self,
        subject: SubjectRef,
        relation: Relation,
        obj: EntityRef,
        rule: RelationRule,
        res: _Resolution,
        depth: int,
        path: frozenset,
    ) -> bool:
        allowed = rule.direct or ()
        usersets: list[SubjectRef] = []
        for t in await self._read(TupleFilter(relation=relation, object=obj)):
            if t.subject.type_label not in allowed:
                logger.warning("Ignoring tuple %s: subject type not allowed by schema", t)
                continue
            if t.subject == subject:
                return True
            if t.subject.is_userset:
                usersets.append(t.subject)

        return await self._any(
            partial(self._check, subject, us.relation, us.entity, res, depth + 1, path) for us in usersets
        )

    async def _check_hop(
        self,
        subject: SubjectRef,
        hop: Hop,
        obj: EntityRef,
        res: _Resolution,
        depth: int,
        path: frozenset,
    ) -> bool:
        # No parent tuples (root folder, unfiled document) contributes False.
        related = [
            t.subject.entity
            for t in await self._read(TupleFilter(relation=hop.via, object=obj))
            if not t.subject.is_userset
        ]
        return await self._any(
            partial(self._check, subject, hop.relation, target, res, depth + 1, path)
            for target in related
            if self.schema.rule(target.type, hop.relation) is not None
        )

    async def _any(self, branches: Iterable[Branch]) -> bool:
        """Concurrent OR with short-circuit. Limit hits count as False."""
        branches = list(branches)
        if not branches:
            return False
        if len(branches) == 1:
            return await self._guarded(branches[0])

        tasks = [asyncio.ensure_future(self._guarded(branch)) for branch in branches]
        try:
            for next_done in asyncio.as_completed(tasks):
                if await next_done:
                    return True
            return False
        finally:
            pending = [t for t in tasks if not t.done()]
            for t in pending:
                t.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    @staticmethod
    async def _guarded(branch: Branch) -> bool:
        try:
            return await branch()
        except DepthExceeded:
            return False

    # ── Subject expansion ───────────────────────────────

    async def expand_subject(self, subject: Union[str, SubjectRef, EntityRef]) -> set[SubjectRef]:
        """Return ``subject`` plus every userset containing it, transitively.

        For a user in ``group:eng`` which is itself a member of ``group:all``
        this yields ``{user:U, group:eng#member, group:all#member}``.
        """
        start = SubjectRef.of(subject)
        found = {start}
        frontier = {start}
        level = 0
        while frontier:
            level += 1
            if level > self.max_depth:
                logger.warning("Subject expansion for %s truncated at depth %d", start, self.max_depth)
                break
            reads = await asyncio.gather(*(self._read(TupleFilter(subject=s)) for s in frontier))
            discovered = set()
            for tuples in reads:
                for t in tuples:
                    if (t.object.type, t.relation) in self._usersets:
                        discovered.add(SubjectRef(t.object, t.relation))
            frontier = discovered - found
            found |= frontier
        return found

    # ── ListObjects ─────────────────────────────────────

    async def list_objects(
        self,
        subject: Union[str, SubjectRef, EntityRef],
        relation: Union[str, Relation],
        object_type: Union[str, ObjectType],
    ) -> set[EntityRef]:
        """Return every ``object_type`` object on which ``subject`` holds ``relation``.

        The result is a set; callers sort if they need an order.
        """
        try:
            subject_ref = SubjectRef.of(subject)
            relation_ref = coerce_relation(relation)
            type_ref = coerce_type(object_type)
        except InvalidTupleError as e:
            logger.warning("Empty listing for malformed arguments: %s", e.message)
            return set()

        if self.schema.rule(type_ref, relation_ref) is None:
            logger.warning("No rule for %s#%s; empty listing", type_ref.value, relation_ref.value)
            return set()

        subjects = await self.expand_subject(subject_ref)
        candidates, _ = await self._reverse(type_ref, relation_ref, subjects, {}, frozenset())

        ordered = sorted(candidates, key=str)
        verdicts = await asyncio.gather(*(self.check(subject_ref, relation_ref, c) for c in ordered))
        result = {c for c, ok in zip(ordered, verdicts) if ok}
        logger.debug(
            "list_objects %s %s %s -> %d of %d candidates",
            subject_ref,
            relation_ref.value,
            type_ref.value,
            len(result),
            len(candidates),
        )
        return result

    async def _reverse(
        self,
        object_type: ObjectType,
        relation: Relation,
        subjects: set[SubjectRef],
        memo: dict,
        stack: frozenset,
    ) -> tuple[set[EntityRef], frozenset]:
        """Candidate objects reached by walking the rule for ``object_type#relation`` backward.

        Returns the candidates and the ancestor nodes the walk stopped at
        because they were already on the stack. A node whose subtree hit
        such a stop is incomplete on its own and is not memoized.
        """
        node = (object_type, relation)
        if node in memo:
            return memo[node], frozenset()
        if node in stack:
            return set(), frozenset({node})
        rule = self.schema.rule(object_type, relation)
        if rule is None:
            return set(), frozenset()
        stack = stack | {node}

        found: set[EntityRef] = set()
        cuts: set = set()
        if rule.direct is not None:
            allowed = rule.direct
            reads = await asyncio.gather(
                *(
                    self._read(TupleFilter(subject=s, relation=relation, object_type=object_type))
                    for s in subjects
                    if s.type_label in allowed
                )
            )
            for tuples in reads:
                found.update(t.object for t in tuples)

        for computed in rule.computed:
            more, stopped = await self._reverse(object_type, computed, subjects, memo, stack)
            found |= more
            cuts |= stopped

        recursive_edges: list[Relation] = []
        for hop in rule.inherited:
            for target_type in self.schema.hop_targets(object_type, hop.via):
                if (target_type, hop.relation) == node:
                    recursive_edges.append(hop.via)
                    continue
                parents, stopped = await self._reverse(target_type, hop.relation, subjects, memo, stack)
                cuts |= stopped
                found |= await self._children(parents, hop.via, object_type)

        if recursive_edges:
            # Walk down the hierarchy from everything found so far.
            frontier = set(found)
            level = 0
            while frontier:
                level += 1
                if level > self.max_depth:
                    logger.warning(
                        "Listing %s#%s truncated at depth %d", object_type.value, relation.value, self.max_depth
                    )
                    break
                below: set[EntityRef] = set()
                for edge in recursive_edges:
                    below |= await self._children(frontier, edge, object_type)
                frontier = below - found
                found |= frontier

        cuts.discard(node)
        if not cuts:
            memo[node] = found
        return found, frozenset(cuts)

    async def _children(
        self,
        parents: Iterable[EntityRef],
        edge: Relation,
        object_type: Optional[ObjectType],
    ) -> set[EntityRef]:
        reads = await asyncio.gather(
            *(
                self._read(TupleFilter(subject=SubjectRef(p), relation=edge, object_type=object_type))
                for p in parents
            )
        )
        return {t.object for tuples in reads for t in tuples}


__all__ = ["Evaluator", "DEFAULT_MAX_DEPTH", "DEFAULT_MAX_DISPATCHES", "DEFAULT_MAX_CONCURRENCY"]
