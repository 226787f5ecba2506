"""Authorization facade: the only interface the application calls.

Translates domain ids (identity-provider subject ids, document, folder and
group ids) into entity references and delegates to the evaluator and the
mutation API. Holds no state of its own.

Example::

    authz = build_authorizer(config)
    await authz.create_folder("auth0|alice", "10")
    await authz.create_document("auth0|alice", "99", parent_id="10")
    await authz.assign_group_to_folder("eng", "10")
    await authz.add_user_to_group("auth0|carol", "eng")
    await authz.can_read("auth0|carol", "99")   # True
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel

from .config import AuthzConfig, load_config_from_env
from .evaluator import Evaluator
from .exceptions import InvalidRelation, InvalidTupleError, OwnershipError
from .mutations import MutationAPI
from .schema import Schema, default_schema, load_schema_file
from .store import TupleStore, create_tuple_store
from .tuples import EntityRef, ObjectType, Relation, RelationTuple, SubjectRef, TupleFilter

logger = logging.getLogger(__name__)

SharePermission = Literal["viewer", "owner"]


# ── Identifier formatting ───────────────────────────────


def format_user_id(user_id: str) -> EntityRef:
    """``"auth0|123"`` → ``user:auth0|123``."""
    return EntityRef(ObjectType.USER, user_id)


def format_doc_id(doc_id: str) -> EntityRef:
    return EntityRef(ObjectType.DOC, doc_id)


def format_folder_id(folder_id: str) -> EntityRef:
    return EntityRef(ObjectType.FOLDER, folder_id)


def format_group_id(group_id: str) -> EntityRef:
    return EntityRef(ObjectType.GROUP, group_id)


def format_group_member(group_id: str) -> SubjectRef:
    """``"eng"`` → ``group:eng#member``, the set of all members of the group."""
    return SubjectRef(format_group_id(group_id), Relation.MEMBER)


def _share_relation(permission: str) -> Relation:
    if permission not in ("viewer", "owner"):
        raise InvalidRelation(f"Share permission must be 'viewer' or 'owner', got {permission!r}")
    return Relation(permission)


def _deny_on_malformed(empty: Callable[[], Any]):
    """Decorator for read-only checks: a malformed id answers ``empty()``.

    Ids come from callers (URLs, tokens), so an id with "#", whitespace or
    nothing at all is a denial, not an error. Store failures still raise.

    Usage:
        @_deny_on_malformed(bool)
        async def can_read(self, user_id, doc_id):
            ...
    """

    def decorator(method):
        @functools.wraps(method)
        async def wrapper(self, *args, **kwargs):
            try:
                return await method(self, *args, **kwargs)
            except InvalidTupleError as e:
                logger.warning("Denying %s with malformed id: %s", method.__name__, e.message)
                return empty()

        return wrapper

    return decorator


class DocumentPermissions(BaseModel):
    """Effective permissions of one user on one document."""

    can_read: bool = False
    can_write: bool = False
    can_share: bool = False
    can_change_owner: bool = False


class Authorizer:
    """Typed permission checks and relationship updates for the application."""

    def __init__(self, evaluator: Evaluator, mutations: MutationAPI) -> None:
        self.evaluator = evaluator
        self.mutations = mutations

    # ── Document checks ─────────────────────────────────

    @_deny_on_malformed(bool)
    async def can_read(self, user_id: str, doc_id: str) -> bool:
        return await self.evaluator.check(format_user_id(user_id), Relation.CAN_READ, format_doc_id(doc_id))

    @_deny_on_malformed(bool)
    async def can_write(self, user_id: str, doc_id: str) -> bool:
        return await self.evaluator.check(format_user_id(user_id), Relation.CAN_WRITE, format_doc_id(doc_id))

    @_deny_on_malformed(bool)
    async def can_share(self, user_id: str, doc_id: str) -> bool:
        return await self.evaluator.check(format_user_id(user_id), Relation.CAN_SHARE, format_doc_id(doc_id))

    @_deny_on_malformed(bool)
    async def can_change_owner(self, user_id: str, doc_id: str) -> bool:
        return await self.evaluator.check(
            format_user_id(user_id), Relation.CAN_CHANGE_OWNER, format_doc_id(doc_id)
        )

    @_deny_on_malformed(DocumentPermissions)
    async def document_permissions(self, user_id: str, doc_id: str) -> DocumentPermissions:
        """All four document permissions, evaluated concurrently."""
        user, doc = format_user_id(user_id), format_doc_id(doc_id)
        relations = (Relation.CAN_READ, Relation.CAN_WRITE, Relation.CAN_SHARE, Relation.CAN_CHANGE_OWNER)
        verdicts = await asyncio.gather(*(self.evaluator.check(user, r, doc) for r in relations))
        return DocumentPermissions(**{r.value: ok for r, ok in zip(relations, verdicts)})

    # ── Folder checks ───────────────────────────────────

    @_deny_on_malformed(bool)
    async def can_create_file(self, user_id: str, folder_id: str) -> bool:
        return await self.evaluator.check(
            format_user_id(user_id), Relation.CAN_CREATE_FILE, format_folder_id(folder_id)
        )

    @_deny_on_malformed(bool)
    async def can_view_folder(self, user_id: str, folder_id: str) -> bool:
        return await self.evaluator.check(format_user_id(user_id), Relation.VIEWER, format_folder_id(folder_id))

    @_deny_on_malformed(bool)
    async def is_folder_owner(self, user_id: str, folder_id: str) -> bool:
        return await self.evaluator.check(format_user_id(user_id), Relation.OWNER, format_folder_id(folder_id))

    # ── Listing ─────────────────────────────────────────

    @_deny_on_malformed(list)
    async def documents_readable_by(self, user_id: str) -> list[str]:
        """Ids of every document the user can read, sorted."""
        found = await self.evaluator.list_objects(format_user_id(user_id), Relation.CAN_READ, ObjectType.DOC)
        return sorted(ref.id for ref in found)

    @_deny_on_malformed(list)
    async def folders_viewable_by(self, user_id: str) -> list[str]:
        """Ids of every folder the user can view, sorted."""
        found = await self.evaluator.list_objects(format_user_id(user_id), Relation.VIEWER, ObjectType.FOLDER)
        return sorted(ref.id for ref in found)

    # ── Document and folder lifecycle ───────────────────

    async def create_document(self, owner_id: str, doc_id: str, parent_id: Optional[str] = None) -> list[RelationTuple]:
        """Record the owner (and containing folder) of a new document in one batch.

        Raises:
            OwnershipError: The id is already in use (it has an owner).
        """
        return await self._create(format_doc_id(doc_id), owner_id, parent_id)

    async def create_folder(self, owner_id: str, folder_id: str, parent_id: Optional[str] = None) -> list[RelationTuple]:
        """Record the owner (and parent folder) of a new folder in one batch."""
        return await self._create(format_folder_id(folder_id), owner_id, parent_id)

    async def _create(self, entity: EntityRef, owner_id: str, parent_id: Optional[str]) -> list[RelationTuple]:
        if await self.mutations.read(TupleFilter(relation=Relation.OWNER, object=entity)):
            raise OwnershipError(f"{entity} already has an owner", object=str(entity))
        tuples = [self.mutations.build(format_user_id(owner_id), Relation.OWNER, entity)]
        if parent_id is not None:
            tuples.append(self.mutations.build(format_folder_id(parent_id), Relation.PARENT, entity))
        await self.mutations.write(tuples)
        logger.info("Created %s owned by user:%s", entity, owner_id)
        return tuples

    async def move_document(self, doc_id: str, new_parent_id: Optional[str]) -> None:
        """Re-parent a document; ``None`` moves it out of every folder.

        Access inherited from the old folder ends in the same batch.
        """
        await self._move(format_doc_id(doc_id), new_parent_id)

    async def move_folder(self, folder_id: str, new_parent_id: Optional[str]) -> None:
        """Re-parent a folder. Raises ParentCycleError when moving under itself."""
        await self._move(format_folder_id(folder_id), new_parent_id)

    async def _move(self, entity: EntityRef, new_parent_id: Optional[str]) -> None:
        parent = format_folder_id(new_parent_id) if new_parent_id is not None else None
        await self.mutations.replace(Relation.PARENT, entity, parent)

    async def transfer_document_ownership(self, doc_id: str, new_owner_id: str) -> None:
        """Replace every owner of the document by ``new_owner_id`` atomically."""
        await self.mutations.replace(Relation.OWNER, format_doc_id(doc_id), format_user_id(new_owner_id))

    async def transfer_folder_ownership(self, folder_id: str, new_owner_id: str) -> None:
        await self.mutations.replace(Relation.OWNER, format_folder_id(folder_id), format_user_id(new_owner_id))

    async def delete_document(self, doc_id: str) -> list[RelationTuple]:
        return await self.mutations.cascade_delete_object(format_doc_id(doc_id))

    async def delete_folder(self, folder_id: str) -> list[RelationTuple]:
        """Remove every tuple of the folder, including ``parent`` links to its children."""
        return await self.mutations.cascade_delete_object(format_folder_id(folder_id))

    async def delete_group(self, group_id: str) -> list[RelationTuple]:
        """Remove memberships and every grant made to the group's members."""
        return await self.mutations.cascade_delete_object(format_group_id(group_id))

    # ── Sharing ─────────────────────────────────────────

    async def share_document(self, doc_id: str, user_id: str, permission: SharePermission = "viewer") -> RelationTuple:
        return await self.mutations.grant(format_user_id(user_id), _share_relation(permission), format_doc_id(doc_id))

    async def unshare_document(self, doc_id: str, user_id: str, permission: SharePermission = "viewer") -> RelationTuple:
        relation = _share_relation(permission)
        return await self.mutations.revoke(
            format_user_id(user_id), relation, format_doc_id(doc_id), keep_one=relation == Relation.OWNER
        )

    async def share_folder(self, folder_id: str, user_id: str, permission: SharePermission = "viewer") -> RelationTuple:
        return await self.mutations.grant(
            format_user_id(user_id), _share_relation(permission), format_folder_id(folder_id)
        )

    async def unshare_folder(self, folder_id: str, user_id: str, permission: SharePermission = "viewer") -> RelationTuple:
        relation = _share_relation(permission)
        return await self.mutations.revoke(
            format_user_id(user_id), relation, format_folder_id(folder_id), keep_one=relation == Relation.OWNER
        )

    # ── Groups ──────────────────────────────────────────

    async def add_user_to_group(self, user_id: str, group_id: str) -> RelationTuple:
        return await self.mutations.grant(format_user_id(user_id), Relation.MEMBER, format_group_id(group_id))

    async def remove_user_from_group(self, user_id: str, group_id: str) -> RelationTuple:
        return await self.mutations.revoke(format_user_id(user_id), Relation.MEMBER, format_group_id(group_id))

    async def assign_group_to_folder(
        self, group_id: str, folder_id: str, permission: SharePermission = "viewer"
    ) -> RelationTuple:
        """Grant every member of the group ``permission`` on the folder."""
        return await self.mutations.grant(
            format_group_member(group_id), _share_relation(permission), format_folder_id(folder_id)
        )

    async def remove_group_from_folder(
        self, group_id: str, folder_id: str, permission: SharePermission = "viewer"
    ) -> RelationTuple:
        relation = _share_relation(permission)
        return await self.mutations.revoke(
            format_group_member(group_id),
            relation,
            format_folder_id(folder_id),
            keep_one=relation == Relation.OWNER,
        )

    async def get_group_members(self, group_id: str) -> list[str]:
        """User ids directly in the group, sorted. Nested groups are not expanded."""
        tuples = await self.mutations.read(TupleFilter(relation=Relation.MEMBER, object=format_group_id(group_id)))
        return sorted(
            t.subject.entity.id
            for t in tuples
            if t.subject.entity.type == ObjectType.USER and not t.subject.is_userset
        )

    # ── Inspection ──────────────────────────────────────

    async def read_tuples(self, obj: str) -> list[dict[str, str]]:
        """Wire form of every tuple whose object is ``obj`` (e.g. ``"doc:123"``)."""
        tuples = await self.mutations.read(TupleFilter(object=EntityRef.parse(obj)))
        return [t.to_wire() for t in tuples]

    async def close(self) -> None:
        await self.mutations.store.close()


def build_authorizer(
    config: Optional[AuthzConfig] = None,
    *,
    schema: Optional[Schema] = None,
    store: Optional[TupleStore] = None,
) -> Authorizer:
    """Wire schema, store, evaluator and mutation API from configuration.

    Args:
        config: AuthzConfig (if None, loads from environment)
        schema: Override the configured schema
        store: Override the configured tuple store

    Raises:
        SchemaLoadError: If the configured schema file is invalid.
    """
    if config is None:
        config = load_config_from_env()
    if schema is None:
        schema = load_schema_file(config.schema_path) if config.schema_path else default_schema()
    if store is None:
        store = create_tuple_store(config)

    evaluator = Evaluator.from_config(schema, store, config)
    mutations = MutationAPI(schema, store, max_depth=config.max_depth)
    logger.info("Authorizer ready (backend=%s, namespace=%s)", config.store_backend, config.namespace)
    return Authorizer(evaluator, mutations)


__all__ = [
    "Authorizer",
    "DocumentPermissions",
    "SharePermission",
    "build_authorizer",
    "format_doc_id",
    "format_folder_id",
    "format_group_id",
    "format_group_member",
    "format_user_id",
]
