"""Tests for schema loading and validation."""

from __future__ import annotations

import copy
import json

import pytest

from rebaccore import (
    DOCUMENT_SCHEMA,
    InvalidRelation,
    ObjectType,
    Relation,
    RelationTuple,
    SchemaLoadError,
    default_schema,
    load_schema,
    load_schema_file,
)


def _schema_with(**changes) -> dict:
    data = copy.deepcopy(DOCUMENT_SCHEMA)
    for path, value in changes.items():
        type_name, relation = path.split("__")
        data["types"][type_name]["relations"][relation] = value
    return data


class TestDefaultSchema:
    """Tests for the built-in document schema."""

    def test_types(self) -> None:
        """Test every object type is defined."""
        schema = default_schema()
        assert set(schema.types) == {ObjectType.USER, ObjectType.GROUP, ObjectType.FOLDER, ObjectType.DOC}

    def test_default_schema_is_cached(self) -> None:
        assert default_schema() is default_schema()

    def test_assignable_relations(self) -> None:
        """Test only stored relations are assignable."""
        schema = default_schema()
        assert schema.is_assignable(ObjectType.DOC, Relation.OWNER)
        assert schema.is_assignable(ObjectType.FOLDER, Relation.PARENT)
        assert schema.is_assignable(ObjectType.GROUP, Relation.MEMBER)
        assert not schema.is_assignable(ObjectType.DOC, Relation.CAN_READ)
        assert not schema.is_assignable(ObjectType.USER, Relation.OWNER)

    def test_allowed_subjects(self) -> None:
        schema = default_schema()
        assert schema.allowed_subjects(ObjectType.DOC, Relation.OWNER) == frozenset({"user"})
        assert schema.allowed_subjects(ObjectType.FOLDER, Relation.VIEWER) == frozenset({"user", "group#member"})
        assert schema.allowed_subjects(ObjectType.DOC, Relation.CAN_READ) == frozenset()

    def test_userset_relations(self) -> None:
        assert default_schema().userset_relations() == frozenset({(ObjectType.GROUP, Relation.MEMBER)})

    def test_hop_targets(self) -> None:
        schema = default_schema()
        assert schema.hop_targets(ObjectType.DOC, Relation.PARENT) == (ObjectType.FOLDER,)
        assert schema.hop_targets(ObjectType.DOC, Relation.VIEWER) == (ObjectType.USER,)

    def test_share_is_not_inherited(self) -> None:
        """Test folder ownership does not grant sharing on contained documents."""
        rule = default_schema().rule(ObjectType.DOC, Relation.CAN_SHARE)
        assert rule.computed == (Relation.OWNER,)
        assert rule.inherited == ()

    def test_schema_is_immutable(self) -> None:
        schema = default_schema()
        with pytest.raises(TypeError):
            schema._types[ObjectType.DOC] = {}  # type: ignore[index]


class TestValidateTuple:
    """Tests for write-time tuple validation."""

    def test_valid_tuples(self) -> None:
        schema = default_schema()
        schema.validate_tuple(RelationTuple.of("user:a", "owner", "doc:1"))
        schema.validate_tuple(RelationTuple.of("group:eng#member", "viewer", "folder:1"))
        schema.validate_tuple(RelationTuple.of("folder:1", "parent", "doc:1"))
        schema.validate_tuple(RelationTuple.of("group:all#member", "member", "group:eng"))

    def test_computed_relation_rejected(self) -> None:
        """Test can_* relations can never be written."""
        with pytest.raises(InvalidRelation, match="computed"):
            default_schema().validate_tuple(RelationTuple.of("user:a", "can_read", "doc:1"))

    def test_undefined_relation_rejected(self) -> None:
        with pytest.raises(InvalidRelation, match="not defined"):
            default_schema().validate_tuple(RelationTuple.of("user:a", "member", "doc:1"))

    def test_subject_type_rejected(self) -> None:
        """Test group usersets cannot own documents."""
        with pytest.raises(InvalidRelation, match="not allowed"):
            default_schema().validate_tuple(RelationTuple.of("group:eng#member", "owner", "doc:1"))

    def test_document_cannot_be_parent(self) -> None:
        with pytest.raises(InvalidRelation):
            default_schema().validate_tuple(RelationTuple.of("doc:2", "parent", "doc:1"))

    def test_error_carries_tuple(self) -> None:
        with pytest.raises(InvalidRelation) as exc_info:
            default_schema().validate_tuple(RelationTuple.of("user:a", "can_write", "doc:1"))
        assert exc_info.value.details["tuple"] == {"user": "user:a", "relation": "can_write", "object": "doc:1"}


class TestLoadSchema:
    """Tests for load-time schema validation."""

    def test_load_from_json(self) -> None:
        schema = load_schema(json.dumps(DOCUMENT_SCHEMA))
        assert schema.rule(ObjectType.DOC, Relation.CAN_READ) is not None

    def test_load_from_file(self, tmp_path) -> None:
        path = tmp_path / "schema.json"
        path.write_text(json.dumps(DOCUMENT_SCHEMA), encoding="utf-8")
        assert load_schema_file(path).has_type(ObjectType.FOLDER)

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(SchemaLoadError, match="Cannot read"):
            load_schema_file(tmp_path / "missing.json")

    def test_invalid_json(self) -> None:
        with pytest.raises(SchemaLoadError, match="not valid JSON"):
            load_schema("{not json")

    def test_unknown_type(self) -> None:
        data = copy.deepcopy(DOCUMENT_SCHEMA)
        data["types"]["widget"] = {"relations": {}}
        with pytest.raises(SchemaLoadError):
            load_schema(data)

    def test_unknown_relation_name(self) -> None:
        data = copy.deepcopy(DOCUMENT_SCHEMA)
        data["types"]["doc"]["relations"]["editor"] = {"direct": ["user"]}
        with pytest.raises(SchemaLoadError):
            load_schema(data)

    def test_empty_rule(self) -> None:
        with pytest.raises(SchemaLoadError, match="no terms"):
            load_schema(_schema_with(doc__viewer={}))

    def test_assignable_permission(self) -> None:
        with pytest.raises(SchemaLoadError, match="cannot be directly assignable"):
            load_schema(_schema_with(doc__can_read={"direct": ["user"]}))

    def test_unknown_subject_label(self) -> None:
        with pytest.raises(SchemaLoadError, match="unknown subject label"):
            load_schema(_schema_with(doc__viewer={"direct": ["robot"]}))

    def test_dangling_userset(self) -> None:
        """Test a userset naming a relation its type lacks is rejected."""
        with pytest.raises(SchemaLoadError, match="userset"):
            load_schema(_schema_with(doc__viewer={"direct": ["group#owner"]}))

    def test_dangling_computed(self) -> None:
        data = _schema_with(folder__can_share={"computed": ["owner"]})
        del data["types"]["folder"]["relations"]["owner"]
        with pytest.raises(SchemaLoadError):
            load_schema(data)

    def test_self_computed(self) -> None:
        with pytest.raises(SchemaLoadError, match="computed from itself"):
            load_schema(_schema_with(doc__viewer={"computed": ["viewer"]}))

    def test_hop_through_computed_relation(self) -> None:
        with pytest.raises(SchemaLoadError, match="must be assignable"):
            load_schema(
                _schema_with(doc__can_write={"inherited": [{"via": "can_read", "relation": "can_write"}]})
            )

    def test_hop_to_undefined_relation(self) -> None:
        with pytest.raises(SchemaLoadError, match="undefined on every type"):
            load_schema(_schema_with(doc__can_write={"inherited": [{"via": "parent", "relation": "member"}]}))

    def test_problems_are_collected(self) -> None:
        data = _schema_with(doc__viewer={}, doc__can_read={"direct": ["user"]})
        with pytest.raises(SchemaLoadError) as exc_info:
            load_schema(data)
        assert len(exc_info.value.details["problems"]) >= 2

    def test_extra_fields_rejected(self) -> None:
        with pytest.raises(SchemaLoadError, match="failed validation"):
            load_schema(_schema_with(doc__viewer={"direct": ["user"], "union": []}))
