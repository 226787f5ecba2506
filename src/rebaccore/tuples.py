"""Relationship tuple data model and wire format.

Provides:
- ``ObjectType`` / ``Relation``: closed vocabularies of the schema.
- ``EntityRef``: ``type:id``.
- ``SubjectRef``: ``type:id`` or relation-qualified ``type:id#relation``.
- ``RelationTuple``: the atomic ``(subject, relation, object)`` fact.
- ``TupleFilter``: partial tuple used for store reads.

Wire format::

    {"user": "group:eng#member", "relation": "viewer", "object": "folder:456"}

Structural ``parent`` tuples name the container as the subject::

    {"user": "folder:10", "relation": "parent", "object": "doc:99"}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError

from .exceptions import InvalidTupleError


class ObjectType(str, Enum):
    """Entity types known to the authorization graph."""

    USER = "user"
    GROUP = "group"
    FOLDER = "folder"
    DOC = "doc"


class Relation(str, Enum):
    """Relation names. ``can_*`` relations are computed, never stored."""

    OWNER = "owner"
    VIEWER = "viewer"
    MEMBER = "member"
    PARENT = "parent"
    CAN_READ = "can_read"
    CAN_WRITE = "can_write"
    CAN_SHARE = "can_share"
    CAN_CHANGE_OWNER = "can_change_owner"
    CAN_CREATE_FILE = "can_create_file"

    @property
    def is_permission(self) -> bool:
        return self.value.startswith("can_")


PERMISSION_RELATIONS: frozenset[Relation] = frozenset(r for r in Relation if r.is_permission)


def coerce_type(value: Union[str, ObjectType]) -> ObjectType:
    """Return ``value`` as ObjectType or raise InvalidTupleError."""
    if isinstance(value, ObjectType):
        return value
    try:
        return ObjectType(value)
    except ValueError:
        raise InvalidTupleError(f"Unknown object type: {value!r}", value=value) from None


def coerce_relation(value: Union[str, Relation]) -> Relation:
    """Return ``value`` as Relation or raise InvalidTupleError."""
    if isinstance(value, Relation):
        return value
    try:
        return Relation(value)
    except ValueError:
        raise InvalidTupleError(f"Unknown relation: {value!r}", value=value) from None


def _validate_id(value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise InvalidTupleError("Entity id must be a non-empty string", value=value)
    if "#" in value or any(ch.isspace() for ch in value):
        raise InvalidTupleError(f"Entity id may not contain '#' or whitespace: {value!r}", value=value)
    return value


@dataclass(frozen=True)
class EntityRef:
    """Reference to an entity: ``type:id``."""

    type: ObjectType
    id: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", coerce_type(self.type))
        _validate_id(self.id)

    def __str__(self) -> str:
        return f"{self.type.value}:{self.id}"

    @classmethod
    def parse(cls, raw: str) -> "EntityRef":
        """Parse ``"doc:123"``. Ids may themselves contain ``:``."""
        if not isinstance(raw, str) or ":" not in raw:
            raise InvalidTupleError(f"Malformed entity reference: {raw!r}", value=raw)
        type_name, entity_id = raw.split(":", 1)
        return cls(coerce_type(type_name), entity_id)


@dataclass(frozen=True)
class SubjectRef:
    """Subject of a tuple: an entity, or every subject holding ``relation`` on it."""

    entity: EntityRef
    relation: Optional[Relation] = None

    def __post_init__(self) -> None:
        if self.relation is not None:
            object.__setattr__(self, "relation", coerce_relation(self.relation))

    def __str__(self) -> str:
        if self.relation is None:
            return str(self.entity)
        return f"{self.entity}#{self.relation.value}"

    @property
    def is_userset(self) -> bool:
        return self.relation is not None

    @property
    def type_label(self) -> str:
        """Schema label of this subject: ``"user"`` or ``"group#member"``."""
        if self.relation is None:
            return self.entity.type.value
        return f"{self.entity.type.value}#{self.relation.value}"

    @classmethod
    def parse(cls, raw: str) -> "SubjectRef":
        """Parse ``"user:auth0|abc"`` or ``"group:eng#member"``."""
        if not isinstance(raw, str):
            raise InvalidTupleError(f"Malformed subject reference: {raw!r}", value=raw)
        if "#" in raw:
            entity_raw, relation = raw.split("#", 1)
            return cls(EntityRef.parse(entity_raw), coerce_relation(relation))
        return cls(EntityRef.parse(raw))

    @classmethod
    def of(cls, value: Union[str, "SubjectRef", EntityRef]) -> "SubjectRef":
        if isinstance(value, SubjectRef):
            return value
        if isinstance(value, EntityRef):
            return cls(value)
        return cls.parse(value)


def _entity_of(value: Union[str, EntityRef]) -> EntityRef:
    return value if isinstance(value, EntityRef) else EntityRef.parse(value)


class TupleKey(BaseModel):
    """Validated wire representation of a tuple."""

    user: str
    relation: str
    object: str

    model_config = {"extra": "forbid", "str_strip_whitespace": True}


@dataclass(frozen=True)
class RelationTuple:
    """The atomic fact ``(subject, relation, object)``.

    Equality and hashing are on the triple, so sets of tuples are
    naturally deduplicated.
    """

    subject: SubjectRef
    relation: Relation
    object: EntityRef

    def __post_init__(self) -> None:
        object.__setattr__(self, "relation", coerce_relation(self.relation))

    def __str__(self) -> str:
        return f"{self.object}#{self.relation.value}@{self.subject}"

    @classmethod
    def of(
        cls,
        subject: Union[str, SubjectRef, EntityRef],
        relation: Union[str, Relation],
        obj: Union[str, EntityRef],
    ) -> "RelationTuple":
        """Build a tuple from wire strings or refs."""
        return cls(SubjectRef.of(subject), coerce_relation(relation), _entity_of(obj))

    def to_wire(self) -> dict[str, str]:
        return {"user": str(self.subject), "relation": self.relation.value, "object": str(self.object)}

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "RelationTuple":
        try:
            key = TupleKey.model_validate(dict(data))
        except ValidationError as e:
            raise InvalidTupleError(f"Malformed tuple: {e.error_count()} validation error(s)", value=dict(data)) from e
        return cls.of(key.user, key.relation, key.object)

    def key(self) -> str:
        """Canonical string form used as a storage member."""
        return json.dumps(self.to_wire(), sort_keys=True, separators=(",", ":"))

    @classmethod
    def from_key(cls, raw: Union[str, bytes]) -> "RelationTuple":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidTupleError("Stored tuple is not valid JSON", value=raw) from e
        if not isinstance(data, dict):
            raise InvalidTupleError("Stored tuple is not an object", value=raw)
        return cls.from_wire(data)


@dataclass(frozen=True)
class TupleFilter:
    """Partial tuple. Unset fields match anything."""

    subject: Optional[SubjectRef] = None
    relation: Optional[Relation] = None
    object: Optional[EntityRef] = None
    object_type: Optional[ObjectType] = None

    def __post_init__(self) -> None:
        if self.relation is not None:
            object.__setattr__(self, "relation", coerce_relation(self.relation))
        if self.object_type is not None:
            object.__setattr__(self, "object_type", coerce_type(self.object_type))

    def matches(self, t: RelationTuple) -> bool:
        if self.subject is not None and t.subject != self.subject:
            return False
        if self.relation is not None and t.relation != self.relation:
            return False
        if self.object is not None and t.object != self.object:
            return False
        if self.object_type is not None and t.object.type != self.object_type:
            return False
        return True


__all__ = [
    "PERMISSION_RELATIONS",
    "EntityRef",
    "ObjectType",
    "Relation",
    "RelationTuple",
    "SubjectRef",
    "TupleFilter",
    "TupleKey",
    "coerce_relation",
    "coerce_type",
]
