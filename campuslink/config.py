from __future__ import annotations

import os
import secrets
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from campuslink.logging import get_logger

logger = get_logger(__name__)


class Environment(str, Enum):
    """Deployment environments recognised by the backend."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the CampusLink auth backend."""

    node_env: Environment = env_field(Environment.DEVELOPMENT, "NODE_ENV")
    database_url: str = env_field(
        "postgresql://localhost:5432/campuslink", "DATABASE_URL"
    )
    redis_url: str | None = env_field(None, "REDIS_URL")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow runtime resets and in-process fallbacks for automated tests.",
    )

    # Session token settings
    jwt_secret: str | None = env_field(None, "JWT_SECRET", validate_default=True)
    jwt_issuer: str = env_field("campuslink", "JWT_ISSUER")
    jwt_audience: str = env_field("campuslink-clients", "JWT_AUDIENCE")
    jwt_expire_days: int = env_field(30, "JWT_EXPIRE_DAYS", ge=1)
    jwt_cookie_expire_days: int = env_field(30, "JWT_COOKIE_EXPIRE_DAYS", ge=1)
    jwt_clock_skew_seconds: int = env_field(0, "JWT_CLOCK_SKEW_SECONDS", ge=0)

    # One-time secrets
    reset_token_ttl_minutes: int = env_field(60, "RESET_TOKEN_TTL_MINUTES", ge=1)
    verification_token_ttl_hours: int = env_field(
        24, "VERIFICATION_TOKEN_TTL_HOURS", ge=1
    )

    # Sensitive-operation limiter
    sensitive_op_max_attempts: int = env_field(5, "SENSITIVE_OP_MAX_ATTEMPTS", ge=1)
    sensitive_op_window_seconds: int = env_field(
        15 * 60, "SENSITIVE_OP_WINDOW_SECONDS", ge=1
    )

    allow_admin_registration: bool = env_field(
        True,
        "ALLOW_ADMIN_REGISTRATION",
        description="Accept role=admin on the public register endpoint",
    )
    forgot_password_reveals_unknown_email: bool = env_field(
        False,
        "FORGOT_PASSWORD_REVEALS_UNKNOWN_EMAIL",
        description="Answer 404 for unregistered emails on forgot-password",
    )

    # Email service settings
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("CampusLink", "EMAIL_FROM_NAME")
    email_send_timeout_seconds: float = env_field(
        15.0, "EMAIL_SEND_TIMEOUT_SECONDS", gt=0
    )
    app_base_url: str = env_field("http://localhost:3000", "APP_BASE_URL")

    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

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

    @property
    def is_production(self) -> bool:
        return self.node_env == Environment.PRODUCTION

    @field_validator("node_env", mode="before")
    @classmethod
    def _validate_node_env(cls, value: Any) -> Environment:
        if isinstance(value, str):
            value = value.strip().lower()
        return Environment(value)

    @field_validator("redis_url", mode="before")
    @classmethod
    def _blank_redis_url(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("jwt_secret")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None) -> str:
        if value:
            return value
        # Tokens signed with a generated secret do not survive a restart
        logger.warning(
            "jwt_secret_generated",
            message="JWT_SECRET is not set; issued tokens will be invalid after restart",
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
