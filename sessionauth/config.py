from __future__ import annotations

import os
import secrets
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from sessionauth.logging import get_logger

logger = get_logger(__name__)

# HS256 keys shorter than the digest size are rejected
MIN_JWT_SECRET_LENGTH = 32


class SameSite(str, Enum):
    """Accepted SameSite values for the refresh cookie."""

    LAX = "lax"
    STRICT = "strict"
    NONE = "none"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for token issuance and refresh-session management."""

    database_url: str = env_field(
        "postgresql://localhost:5432/sessionauth", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Toggle deterministic testing behaviors",
    )

    # Access tokens
    jwt_secret: str = env_field(None, "JWT_SECRET", validate_default=True)
    access_token_ttl_ms: int = env_field(
        15 * 60 * 1000,
        "ACCESS_TOKEN_TTL_MS",
        description="Access token lifetime in milliseconds",
        gt=0,
    )

    # Refresh sessions
    refresh_days: int = env_field(
        30, "REFRESH_DAYS", description="Lifetime of a standard refresh session", gt=0
    )
    remember_days: int = env_field(
        90,
        "REMEMBER_DAYS",
        description="Lifetime of an extended (remember me) refresh session",
        gt=0,
    )
    refresh_rotate: bool = env_field(
        True,
        "REFRESH_ROTATE",
        description="Mint a new refresh secret on every refresh",
    )
    max_active_sessions: int = env_field(
        5,
        "MAX_ACTIVE_SESSIONS",
        description="Concurrent valid refresh sessions allowed per user",
        ge=1,
    )

    # Refresh cookie transport
    refresh_cookie_name: str = env_field("refresh_token", "REFRESH_COOKIE_NAME")
    refresh_cookie_path: str = env_field("/api/auth", "REFRESH_COOKIE_PATH")
    refresh_cookie_secure: bool = env_field(False, "REFRESH_COOKIE_SECURE")
    refresh_cookie_same_site: SameSite = env_field(
        SameSite.LAX, "REFRESH_COOKIE_SAME_SITE"
    )

    # Sweep of expired sessions
    session_retention_days: int = env_field(
        7,
        "SESSION_RETENTION_DAYS",
        description="Days an expired session is kept before the sweep deletes it",
        ge=0,
    )
    sweep_interval_seconds: int = env_field(
        24 * 60 * 60,
        "SWEEP_INTERVAL_SECONDS",
        description="Interval between two sweeps of expired refresh sessions",
        gt=0,
    )
    sweep_enabled: bool = env_field(True, "SWEEP_ENABLED")

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

    @field_validator("refresh_cookie_same_site", mode="before")
    @classmethod
    def _normalize_same_site(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None) -> str:
        if value:
            if len(value.encode("utf-8")) < MIN_JWT_SECRET_LENGTH:
                raise ValueError(
                    f"JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} bytes"
                )
            return value
        # Tokens signed with a generated key do not survive a restart
        logger.warning(
            "jwt_secret_generated",
            message="JWT_SECRET not set; generated an ephemeral signing key",
        )
        return secrets.token_urlsafe(64)


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
