"""Centralized configuration for MartialBase.

Uses Pydantic BaseSettings with environment variable loading and validation.
All MB_* environment variables are validated at import time.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = {"env_prefix": "MB_", "case_sensitive": False, "extra": "ignore"}

    environment: str = Field(
        default="development", description="Runtime environment: development or production"
    )

    # Storage
    db_path: str = Field(default="martialbase.db", description="SQLite database path")

    # Auth
    auth_provider: str = Field(default="jwt", description="Token verifier: jwt or oidc")
    jwt_secret: str = Field(
        default="mb-dev-secret-do-not-use-in-production",
        description="HS256 shared secret used by the jwt verifier",
    )
    jwt_audience: str | None = Field(default=None, description="Audience required by jwt verifier")
    oidc_issuer: str | None = Field(default=None, description="OIDC issuer URL")
    oidc_audience: str | None = Field(default=None, description="OIDC audience")
    subject_claim: str = Field(
        default="sub", description="Token claim carrying the external user id (oid for Azure B2C)"
    )
    invitation_code_claim: str = Field(
        default="extension_InvitationCode",
        description="Token claim carrying an optional invitation code",
    )
    invitation_code_length: int = Field(
        default=7, ge=4, le=64, description="Length of generated invitation codes"
    )

    # Logging
    log_format: str = Field(default="text", description="Log format: text or json")
    log_level: str = Field(default="INFO", description="Python log level")

    # Server
    host: str = Field(default="0.0.0.0", description="Server bind host")  # noqa: S104
    port: int = Field(default=8000, ge=1, le=65535, description="Server bind port")

    # CORS
    cors_origins: str = Field(default="*", description="Comma-separated CORS origins")

    # Rate limiting
    rate_limit: str = Field(
        default="100/minute",
        description="Default rate limit (e.g., 100/minute). Set to 'none' to disable.",
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        v = v.lower()
        if v not in ("development", "production"):
            msg = f"MB_ENVIRONMENT must be 'development' or 'production', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("auth_provider")
    @classmethod
    def validate_auth_provider(cls, v: str) -> str:
        v = v.lower()
        if v not in ("jwt", "oidc"):
            msg = f"MB_AUTH_PROVIDER must be 'jwt' or 'oidc', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "json"):
            msg = f"MB_LOG_FORMAT must be 'text' or 'json', got '{v}'"
            raise ValueError(msg)
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        import logging

        v = v.upper()
        if not hasattr(logging, v):
            msg = f"MB_LOG_LEVEL must be a valid Python log level, got '{v}'"
            raise ValueError(msg)
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def cors_origin_list(self) -> list[str]:
        """Return parsed list of CORS origins."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


# Singleton, validated at import time.
settings = Settings()
