"""Unified exception hierarchy for rebaccore.

All errors inherit from AuthzError. This module provides:
- Base exception hierarchy with stable error codes
- ErrorRegistry for protocol mapping
- HTTP status mapping for the surrounding application

Propagation policy:
    Permission questions never raise for data-shaped problems (missing objects,
    cyclic parents, malformed tuples); they degrade to a deny answer. Only
    StoreUnavailable escapes a check, and callers must treat it as a deny.

Usage:
    from rebaccore.exceptions import (
        AuthzError,
        InvalidRelation,
        StoreUnavailable,
    )
"""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar, cast

__all__ = [
    # Base hierarchy
    "AuthzError",
    "ConfigurationError",
    "SchemaLoadError",
    "InvalidRelation",
    "InvalidTupleError",
    "ParentCycleError",
    "TupleConflict",
    "OwnershipError",
    "StoreUnavailable",
    "DepthExceeded",
    # Registry
    "ErrorRegistry",
    "error_registry",
    "register_error",
    # Protocol helpers
    "http_status_for",
]

logger = logging.getLogger(__name__)


# ---- Exception Hierarchy ----------------------------------------------------


class AuthzError(Exception):
    """Base exception for the authorization subsystem.

    Attributes:
        code: Stable error code string for protocol mapping (e.g. "INVALID_RELATION").
        message: Human-readable error description.
        details: Additional context as keyword arguments.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal authorization error occurred"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)


class ConfigurationError(AuthzError):
    """Invalid or missing configuration."""

    code: str = "CONFIGURATION_ERROR"


class SchemaLoadError(AuthzError):
    """Malformed authorization schema. Fatal at startup."""

    code: str = "SCHEMA_LOAD_ERROR"
    message: str = "Authorization schema is invalid"


class InvalidRelation(AuthzError):
    """Relation or subject type not writable for the object type."""

    code: str = "INVALID_RELATION"
    message: str = "Relation is not assignable on this object type"


class InvalidTupleError(InvalidRelation):
    """Tuple or entity reference could not be parsed."""

    code: str = "INVALID_TUPLE"
    message: str = "Malformed relationship tuple"


class ParentCycleError(InvalidRelation):
    """Writing a parent tuple would make an object its own ancestor."""

    code: str = "PARENT_CYCLE"
    message: str = "Parent relation would create a cycle"


class TupleConflict(AuthzError):
    """A write batch contradicts itself (same tuple written and deleted)."""

    code: str = "TUPLE_CONFLICT"
    message: str = "Conflicting tuples in write batch"


class OwnershipError(AuthzError):
    """Mutation would leave a document or folder without an owner."""

    code: str = "OWNERSHIP_ERROR"
    message: str = "Object must keep at least one owner"


class StoreUnavailable(AuthzError):
    """Underlying tuple storage is unreachable."""

    code: str = "STORE_UNAVAILABLE"
    message: str = "Tuple store is unavailable"


class DepthExceeded(AuthzError):
    """Resolution hit the depth or dispatch cap.

    Internal signal only: the evaluator converts it to a deny answer.
    """

    code: str = "DEPTH_EXCEEDED"
    message: str = "Resolution depth exceeded"


# ---- Error Registry for Protocol Mapping ------------------------------------

_E = TypeVar("_E", bound=type[AuthzError])


class ErrorRegistry:
    """Registry for mapping internal errors to external protocol codes."""

    def __init__(self) -> None:
        self._errors: dict[str, type[AuthzError]] = {}

    def register(self, code: str, error_cls: type[AuthzError]) -> None:
        self._errors[code] = error_cls

    def get(self, code: str) -> type[AuthzError] | None:
        return self._errors.get(code)

    def all(self) -> dict[str, type[AuthzError]]:
        return dict(self._errors)


error_registry = ErrorRegistry()


def register_error(code: str) -> Callable[[_E], _E]:
    """Decorator to register a custom error type.

    Usage:
        @register_error("MY_CUSTOM_ERROR")
        class MyCustomError(AuthzError):
            code = "MY_CUSTOM_ERROR"
    """

    def decorator(cls: _E) -> _E:
        error_registry.register(code, cls)
        return cls

    return cast(Callable[[_E], _E], decorator)


# Register base errors
error_registry.register("INTERNAL_ERROR", AuthzError)
error_registry.register("CONFIGURATION_ERROR", ConfigurationError)
error_registry.register("SCHEMA_LOAD_ERROR", SchemaLoadError)
error_registry.register("INVALID_RELATION", InvalidRelation)
error_registry.register("INVALID_TUPLE", InvalidTupleError)
error_registry.register("PARENT_CYCLE", ParentCycleError)
error_registry.register("TUPLE_CONFLICT", TupleConflict)
error_registry.register("OWNERSHIP_ERROR", OwnershipError)
error_registry.register("STORE_UNAVAILABLE", StoreUnavailable)
error_registry.register("DEPTH_EXCEEDED", DepthExceeded)


# ---- HTTP Mapping -----------------------------------------------------------

_ERROR_TO_HTTP = {
    "CONFIGURATION_ERROR": 500,
    "SCHEMA_LOAD_ERROR": 500,
    "INVALID_RELATION": 400,
    "INVALID_TUPLE": 400,
    "PARENT_CYCLE": 400,
    "TUPLE_CONFLICT": 409,
    "OWNERSHIP_ERROR": 409,
    "STORE_UNAVAILABLE": 503,
}


def http_status_for(error: AuthzError) -> int:
    """Map an AuthzError to the HTTP status the application should return.

    A denied permission is not an error and is always answered with 403
    by the caller; this mapping only covers failures of the subsystem itself.
    """
    return _ERROR_TO_HTTP.get(error.code, 500)
