from __future__ import annotations

import os
import secrets
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from authgate.logging import get_logger

logger = get_logger(__name__)

_MIN_SECRET_LENGTH = 32


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the authentication service."""

    database_url: str = env_field(
        "postgresql://localhost:5432/authgate", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    use_memory_store: bool = env_field(
        False,
        "USE_MEMORY_STORE",
        description="Keep identities, challenges and revocations in process memory. "
        "Only valid for a single instance or for tests.",
    )
    test_mode: bool = env_field(False, "TEST_MODE")

    # Session tokens
    jwt_secret: str | None = env_field(None, "JWT_SECRET")
    jwt_issuer: str = env_field("authgate", "JWT_ISSUER")
    jwt_audience: str = env_field("authgate-clients", "JWT_AUDIENCE")
    token_ttl_seconds: int = env_field(
        60 * 60, "TOKEN_TTL_SECONDS", gt=0, description="Session token lifetime"
    )
    clock_skew_seconds: int = env_field(
        0,
        "CLOCK_SKEW_SECONDS",
        ge=0,
        description="Grace applied to token expiry for clock drift between nodes",
    )
    auth_cookie_name: str = env_field("jwt", "AUTH_COOKIE_NAME")
    secure_cookies: bool = env_field(True, "SECURE_COOKIES")

    # Second factor
    challenge_ttl_seconds: int = env_field(
        10 * 60, "CHALLENGE_TTL_SECONDS", gt=0
    )
    challenge_max_attempts: int = env_field(
        5,
        "CHALLENGE_MAX_ATTEMPTS",
        gt=0,
        description="Wrong codes tolerated before a pending challenge is discarded",
    )

    # Password hashing (argon2id)
    argon2_time_cost: int = env_field(2, "ARGON2_TIME_COST", gt=0)
    argon2_memory_cost: int = env_field(
        15000, "ARGON2_MEMORY_COST", gt=0, description="Memory cost in KiB"
    )
    argon2_parallelism: int = env_field(1, "ARGON2_PARALLELISM", gt=0)
    hash_workers: int = env_field(
        4, "HASH_WORKERS", gt=0, description="Threads dedicated to password hashing"
    )
    hash_timeout_seconds: float = env_field(10.0, "HASH_TIMEOUT_SECONDS", gt=0)

    # Backends
    store_timeout_seconds: float = env_field(
        5.0,
        "STORE_TIMEOUT_SECONDS",
        gt=0,
        description="Deadline applied to every directory, ledger and challenge call",
    )

    # Notifier
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("Authgate", "EMAIL_FROM_NAME")

    allow_signup: bool = env_field(True, "ALLOW_SIGNUP")

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

    @field_validator("jwt_secret")
    @classmethod
    def _check_jwt_secret_length(cls, value: str | None) -> str | None:
        if value is not None and len(value) < _MIN_SECRET_LENGTH:
            raise ValueError(
                f"JWT_SECRET must be at least {_MIN_SECRET_LENGTH} characters"
            )
        return value

    @model_validator(mode="after")
    def _ensure_jwt_secret(self) -> "Settings":
        # Every verifier must share one key, so a generated key is only
        # acceptable for a throwaway test process.
        if self.jwt_secret:
            return self
        if not self.test_mode:
            raise ValueError("JWT_SECRET is required outside TEST_MODE")
        self.jwt_secret = secrets.token_urlsafe(64)
        logger.warning("jwt_secret_generated", reason="test_mode")
        return self


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
