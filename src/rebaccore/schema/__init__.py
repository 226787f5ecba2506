"""Schema registry for the relationship graph.

Defines:
- RelationRule / Hop: rewrite rules (direct, computed, inherited terms)
- Schema: immutable registry consulted by the evaluator and mutation API
- DOCUMENT_SCHEMA: built-in folder/document/group model
- load_schema() / load_schema_file(): validate at startup
"""

from functools import lru_cache

from .defaults import DOCUMENT_SCHEMA
from .model import (
    Hop,
    RelationRule,
    Schema,
    SchemaDocument,
    TypeDefinition,
    load_schema,
    load_schema_file,
)


@lru_cache(maxsize=1)
def default_schema() -> Schema:
    """The built-in document sharing schema, loaded once."""
    return load_schema(DOCUMENT_SCHEMA)


__all__ = [
    "DOCUMENT_SCHEMA",
    "Hop",
    "RelationRule",
    "Schema",
    "SchemaDocument",
    "TypeDefinition",
    "default_schema",
    "load_schema",
    "load_schema_file",
]
