from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from warden.logging import get_logger

logger = get_logger(__name__)

# HS256 keys shorter than the digest size weaken the MAC
MIN_JWT_SECRET_LENGTH = 32


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the token authority and coordination store."""

    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_socket_timeout: float = env_field(
        5.0,
        "REDIS_SOCKET_TIMEOUT",
        description="Connect and command timeout for the coordination store, in seconds",
    )
    cache_prefix: str = env_field(
        "warden",
        "CACHE_PREFIX",
        description="Namespace prepended to every coordination key as '<prefix>:'",
    )
    jwt_secret: str = env_field(None, "JWT_SECRET", validate_default=True)
    access_token_ttl_seconds: int = env_field(
        900,
        "ACCESS_TOKEN_TTL_SECONDS",
        description="Lifetime of issued session claims",
    )
    jwt_leeway_seconds: int = env_field(
        0,
        "JWT_LEEWAY_SECONDS",
        description="Clock skew tolerated when checking claim expiry",
    )
    argon2_time_cost: int = env_field(3, "ARGON2_TIME_COST")
    argon2_memory_cost: int = env_field(
        65536, "ARGON2_MEMORY_COST", description="Argon2 memory cost in KiB"
    )
    argon2_parallelism: int = env_field(4, "ARGON2_PARALLELISM")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _ensure_jwt_secret(cls, value: Any) -> str:
        if not value or not isinstance(value, str):
            logger.error("jwt_secret_missing")
            raise ValueError("JWT_SECRET must be set")
        if len(value) < MIN_JWT_SECRET_LENGTH:
            logger.error("jwt_secret_too_short", length=len(value))
            raise ValueError(
                f"JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters"
            )
        return value

    @field_validator("cache_prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        value = value.strip()
        if not value or value.endswith(":"):
            raise ValueError("CACHE_PREFIX must be non-empty and not end with ':'")
        return value

    @field_validator("access_token_ttl_seconds")
    @classmethod
    def _validate_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("ACCESS_TOKEN_TTL_SECONDS must be positive")
        return value

    @field_validator("jwt_leeway_seconds")
    @classmethod
    def _validate_leeway(cls, value: int) -> int:
        if value < 0:
            raise ValueError("JWT_LEEWAY_SECONDS must not be negative")
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


def reset_settings_cache() -> None:
    global _settings_cache
    _settings_cache = None


_settings_cache: Settings | None = None
