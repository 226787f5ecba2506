"""Schema registry: object types, relations and rewrite rules.

A rule is a union of three kinds of terms:

- ``direct``: literal tuples, restricted to the listed subject labels
  (``"user"``, ``"folder"``, ``"group#member"``). Only relations with a
  ``direct`` list may be written.
- ``computed``: another relation on the same object.
- ``inherited``: hop to the subjects of ``via`` tuples on this object and
  evaluate ``relation`` there.

Schemas are validated completely at load time; a loaded Schema is immutable.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from ..exceptions import InvalidRelation, SchemaLoadError
from ..tuples import ObjectType, Relation, RelationTuple

logger = logging.getLogger(__name__)


class Hop(BaseModel):
    """Inherit ``relation`` from the objects reached through ``via``."""

    via: Relation
    relation: Relation

    model_config = {"frozen": True, "extra": "forbid"}


class RelationRule(BaseModel):
    """Rewrite rule for one relation on one object type."""

    direct: Optional[tuple[str, ...]] = None
    computed: tuple[Relation, ...] = ()
    inherited: tuple[Hop, ...] = ()

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def assignable(self) -> bool:
        return self.direct is not None


class TypeDefinition(BaseModel):
    relations: dict[Relation, RelationRule] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}


class SchemaDocument(BaseModel):
    """Raw schema as loaded from configuration."""

    types: dict[ObjectType, TypeDefinition]

    model_config = {"extra": "forbid"}


def _parse_label(label: str) -> tuple[ObjectType, Optional[Relation]]:
    type_name, _, relation = label.partition("#")
    return ObjectType(type_name), Relation(relation) if relation else None


class Schema:
    """Immutable registry of rewrite rules keyed by ``(type, relation)``."""

    __slots__ = ("_types",)

    def __init__(self, types: Mapping[ObjectType, Mapping[Relation, RelationRule]]) -> None:
        self._types = MappingProxyType({t: MappingProxyType(dict(rels)) for t, rels in types.items()})

    def __repr__(self) -> str:
        return f"Schema(types={[t.value for t in self._types]!r})"

    @property
    def types(self) -> tuple[ObjectType, ...]:
        return tuple(self._types)

    def has_type(self, object_type: ObjectType) -> bool:
        return object_type in self._types

    def relations(self, object_type: ObjectType) -> tuple[Relation, ...]:
        return tuple(self._types.get(object_type, {}))

    def rule(self, object_type: ObjectType, relation: Relation) -> Optional[RelationRule]:
        return self._types.get(object_type, {}).get(relation)

    def is_assignable(self, object_type: ObjectType, relation: Relation) -> bool:
        rule = self.rule(object_type, relation)
        return rule is not None and rule.assignable

    def allowed_subjects(self, object_type: ObjectType, relation: Relation) -> frozenset[str]:
        rule = self.rule(object_type, relation)
        if rule is None or rule.direct is None:
            return frozenset()
        return frozenset(rule.direct)

    def userset_relations(self) -> frozenset[tuple[ObjectType, Relation]]:
        """Every ``type#relation`` that appears as a subject label."""
        found = set()
        for rels in self._types.values():
            for rule in rels.values():
                for label in rule.direct or ():
                    subject_type, relation = _parse_label(label)
                    if relation is not None:
                        found.add((subject_type, relation))
        return frozenset(found)

    def hop_targets(self, object_type: ObjectType, via: Relation) -> tuple[ObjectType, ...]:
        """Object types reachable through ``via`` tuples on ``object_type``."""
        targets = []
        for label in self.allowed_subjects(object_type, via):
            target, relation = _parse_label(label)
            if relation is None:
                targets.append(target)
        return tuple(sorted(targets, key=lambda t: t.value))

    def validate_tuple(self, t: RelationTuple) -> None:
        """Raise InvalidRelation unless ``t`` may be stored under this schema."""
        object_type = t.object.type
        rule = self.rule(object_type, t.relation)
        if rule is None:
            raise InvalidRelation(
                f"Relation '{t.relation.value}' is not defined on type '{object_type.value}'",
                tuple=t.to_wire(),
            )
        if rule.direct is None:
            raise InvalidRelation(
                f"Relation '{t.relation.value}' on '{object_type.value}' is computed and cannot be written",
                tuple=t.to_wire(),
            )
        if t.subject.type_label not in rule.direct:
            raise InvalidRelation(
                f"Subject type '{t.subject.type_label}' not allowed for "
                f"'{object_type.value}#{t.relation.value}' (allowed: {sorted(rule.direct)})",
                tuple=t.to_wire(),
            )


def _validate(doc: SchemaDocument) -> list[str]:
    """Collect every structural problem in ``doc``."""
    problems: list[str] = []
    types = doc.types

    for object_type, definition in types.items():
        for relation, rule in definition.relations.items():
            where = f"{object_type.value}#{relation.value}"

            if rule.direct is None and not rule.computed and not rule.inherited:
                problems.append(f"{where}: rule has no terms")
            if relation.is_permission and rule.direct is not None:
                problems.append(f"{where}: permission relations cannot be directly assignable")

            for label in rule.direct or ():
                try:
                    subject_type, subject_relation = _parse_label(label)
                except ValueError:
                    problems.append(f"{where}: unknown subject label '{label}'")
                    continue
                if subject_type not in types:
                    problems.append(f"{where}: subject type '{subject_type.value}' is not defined")
                elif subject_relation is not None and subject_relation not in types[subject_type].relations:
                    problems.append(
                        f"{where}: userset '{label}' names relation undefined on '{subject_type.value}'"
                    )

            for computed in rule.computed:
                if computed not in definition.relations:
                    problems.append(f"{where}: computed relation '{computed.value}' is not defined")
                elif computed == relation:
                    problems.append(f"{where}: relation cannot be computed from itself")

            for hop in rule.inherited:
                via_rule = definition.relations.get(hop.via)
                if via_rule is None or via_rule.direct is None:
                    problems.append(f"{where}: hop relation '{hop.via.value}' must be assignable")
                    continue
                targets = []
                for label in via_rule.direct:
                    try:
                        target, userset = _parse_label(label)
                    except ValueError:
                        continue
                    if userset is None and target in types:
                        targets.append(target)
                if not targets:
                    problems.append(f"{where}: hop '{hop.via.value}' reaches no object type")
                elif not any(hop.relation in types[target].relations for target in targets):
                    problems.append(
                        f"{where}: relation '{hop.relation.value}' undefined on every type reached via '{hop.via.value}'"
                    )

    return problems


def load_schema(data: Union[Mapping[str, Any], str, SchemaDocument]) -> Schema:
    """Validate and freeze a schema.

    Args:
        data: Schema mapping, JSON text, or an already parsed SchemaDocument.

    Returns:
        Immutable Schema.

    Raises:
        SchemaLoadError: On any unknown name, dangling reference or empty rule.
    """
    if isinstance(data, SchemaDocument):
        doc = data
    else:
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as e:
                raise SchemaLoadError(f"Schema is not valid JSON: {e}") from e
        try:
            doc = SchemaDocument.model_validate(data)
        except ValidationError as e:
            raise SchemaLoadError(
                f"Schema failed validation: {e.error_count()} error(s)",
                errors=[err["msg"] for err in e.errors()],
            ) from e

    problems = _validate(doc)
    if problems:
        raise SchemaLoadError(f"Schema is inconsistent: {problems[0]}", problems=problems)

    schema = Schema({t: d.relations for t, d in doc.types.items()})
    logger.debug("Loaded schema with types %s", [t.value for t in schema.types])
    return schema


def load_schema_file(path: Union[str, Path]) -> Schema:
    """Load a JSON schema file."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise SchemaLoadError(f"Cannot read schema file {path}: {e}") from e
    return load_schema(text)


__all__ = [
    "Hop",
    "RelationRule",
    "Schema",
    "SchemaDocument",
    "TypeDefinition",
    "load_schema",
    "load_schema_file",
]
