"""Configuration contract for the authorization subsystem.

This module provides a Pydantic-validated configuration model covering
logging, tuple storage, tenant addressing and evaluator limits.

All settings MUST come through AuthzConfig. Direct os.environ/os.getenv
usage is only allowed in load_config_from_env().
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StoreBackend(str, Enum):
    """Supported tuple store backends.

    - MEMORY: In-process store (tests, single-process deployments)
    - REDIS: Shared Redis store (multi-process deployments)
    """

    MEMORY = "memory"
    REDIS = "redis"


class AuthzConfig(BaseModel):
    """Configuration for the ReBAC engine.

    Environment variables (see load_config_from_env):
        LOG_LEVEL: logging level
        LOG_JSON: JSON log format (true/false)
        REBAC_STORE_BACKEND: memory | redis
        REDIS_URL: Redis connection URL (redis backend)
        REBAC_KEY_PREFIX: Redis key prefix
        TENANT_ID: tenant namespace for tuple addressing
        REBAC_MAX_DEPTH: recursion cap per check
        REBAC_MAX_DISPATCHES: total sub-check budget per call
        REBAC_MAX_CONCURRENCY: concurrent store reads per evaluator
        REBAC_STORE_TIMEOUT: store I/O timeout in seconds
        REBAC_SCHEMA_PATH: optional JSON schema file
    """

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level for the service",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )

    # Storage
    store_backend: StoreBackend = Field(
        default=StoreBackend.MEMORY,
        description="Tuple store backend: memory or redis",
    )
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL (e.g., redis://localhost:6379/0)",
    )
    key_prefix: str = Field(
        default="rebac",
        min_length=1,
        description="Prefix for all tuple keys in Redis",
    )
    store_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Socket timeout for tuple store I/O",
    )

    # Tenant isolation
    tenant_id: Optional[str] = Field(
        default=None,
        description="Tenant namespace; tuples of different tenants never meet",
    )

    # Evaluator limits
    max_depth: int = Field(
        default=32,
        ge=1,
        le=256,
        description="Maximum recursion depth for a single check path",
    )
    max_dispatches: int = Field(
        default=2000,
        ge=1,
        description="Maximum sub-checks per check or list call, shared across branches",
    )
    max_concurrency: int = Field(
        default=16,
        ge=1,
        description="Maximum concurrent store reads per evaluator",
    )

    # Schema
    schema_path: Optional[str] = Field(
        default=None,
        description="JSON schema file; built-in document schema when unset",
    )

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("Redis URL must start with redis://, rediss://, or unix://")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    @field_validator("tenant_id")
    @classmethod
    def validate_tenant_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not v or ":" in v or any(ch.isspace() for ch in v):
            raise ValueError("tenant_id must be non-empty and contain no ':' or whitespace")
        return v

    @model_validator(mode="after")
    def validate_backend(self) -> "AuthzConfig":
        if self.store_backend == StoreBackend.REDIS and not self.redis_url:
            raise ValueError("redis_url is required when store_backend is 'redis'")
        return self

    @property
    def namespace(self) -> str:
        """Key namespace of this tenant inside the tuple store."""
        return f"{self.key_prefix}:{self.tenant_id or 'default'}"

    model_config = {
        "use_enum_values": True,
        "extra": "forbid",  # Prevent accidental extra fields
    }


def _env_bool(raw: str) -> bool:
    return raw.lower() in ("true", "1", "yes", "on")


def load_config_from_env() -> AuthzConfig:
    """Load configuration from environment variables.

    This is the ONLY place where os.getenv is allowed for these settings.

    Returns:
        AuthzConfig instance with values from environment or defaults.
    """
    import os

    return AuthzConfig(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=_env_bool(os.getenv("LOG_JSON", "false")),
        store_backend=os.getenv("REBAC_STORE_BACKEND", "memory"),
        redis_url=os.getenv("REDIS_URL"),
        key_prefix=os.getenv("REBAC_KEY_PREFIX", "rebac"),
        tenant_id=os.getenv("TENANT_ID") or None,
        max_depth=int(os.getenv("REBAC_MAX_DEPTH", "32")),
        max_dispatches=int(os.getenv("REBAC_MAX_DISPATCHES", "2000")),
        max_concurrency=int(os.getenv("REBAC_MAX_CONCURRENCY", "16")),
        store_timeout_seconds=float(os.getenv("REBAC_STORE_TIMEOUT", "2.0")),
        schema_path=os.getenv("REBAC_SCHEMA_PATH") or None,
    )


__all__ = [
    "AuthzConfig",
    "LogLevel",
    "StoreBackend",
    "load_config_from_env",
]
