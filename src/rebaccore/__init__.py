from .config import AuthzConfig, LogLevel, StoreBackend, load_config_from_env
from .evaluator import Evaluator
from .exceptions import (
    AuthzError,
    ConfigurationError,
    DepthExceeded,
    InvalidRelation,
    InvalidTupleError,
    OwnershipError,
    ParentCycleError,
    SchemaLoadError,
    StoreUnavailable,
    TupleConflict,
)
from .facade import (
    Authorizer,
    DocumentPermissions,
    build_authorizer,
    format_doc_id,
    format_folder_id,
    format_group_id,
    format_group_member,
    format_user_id,
)
from .logging import (
    AuthzFormatter,
    AuthzLoggerAdapter,
    get_authz_logger,
    redact_secrets,
    safe_log_value,
    safe_preview,
    setup_logging,
)
from .mutations import MutationAPI
from .schema import DOCUMENT_SCHEMA, Schema, default_schema, load_schema, load_schema_file
from .store import MemoryTupleStore, TupleStore, create_tuple_store
from .tuples import EntityRef, ObjectType, Relation, RelationTuple, SubjectRef, TupleFilter

__all__ = [
    'AuthzConfig',
    'LogLevel',
    'StoreBackend',
    'load_config_from_env',
    'Evaluator',
    'AuthzError',
    'ConfigurationError',
    'DepthExceeded',
    'InvalidRelation',
    'InvalidTupleError',
    'OwnershipError',
    'ParentCycleError',
    'SchemaLoadError',
    'StoreUnavailable',
    'TupleConflict',
    'Authorizer',
    'DocumentPermissions',
    'build_authorizer',
    'format_doc_id',
    'format_folder_id',
    'format_group_id',
    'format_group_member',
    'format_user_id',
    'AuthzFormatter',
    'AuthzLoggerAdapter',
    'get_authz_logger',
    'redact_secrets',
    'safe_log_value',
    'safe_preview',
    'setup_logging',
    'MutationAPI',
    'DOCUMENT_SCHEMA',
    'Schema',
    'default_schema',
    'load_schema',
    'load_schema_file',
    'MemoryTupleStore',
    'TupleStore',
    'create_tuple_store',
    'EntityRef',
    'ObjectType',
    'Relation',
    'RelationTuple',
    'SubjectRef',
    'TupleFilter',
]
