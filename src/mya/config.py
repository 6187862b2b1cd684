"""Configuration management for the MYA gateway."""

import os
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MYA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server configuration
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Runtime environment (development, staging, production)",
    )
    server_name: str = Field(default="mya-gateway", description="Service name reported by /health")
    server_host: str = Field(default="localhost", description="Server bind host")
    server_port: int = Field(default=8787, description="Server bind port")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Auth configuration
    jwt_secret: SecretStr = Field(
        default=SecretStr(""),
        description="JWT signing secret (required for auth)",
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    otp_ttl_minutes: int = Field(
        default=15, ge=10, le=15, description="One-time passcode lifetime (minutes)"
    )

    # Backend (analysis engine) configuration
    llm_url: str = Field(
        default="",
        description="Backend service base URL (e.g. https://<user>-mya-llm.hf.space)",
    )
    llm_api_token: SecretStr = Field(
        default=SecretStr(""),
        description="Shared secret sent to the backend in X-API-Token",
    )
    backend_timeout_seconds: float = Field(
        default=30.0, gt=0, le=300, description="Timeout for each backend call (seconds)"
    )

    # Rate limiting configuration
    rate_limit_enabled: bool = Field(default=True, description="Enable per-identity rate limiting")
    rate_limit_requests: int = Field(
        default=60, ge=1, description="Requests allowed per identity per window"
    )
    rate_limit_window_seconds: int = Field(
        default=60, ge=1, description="Fixed rate-limit window length (seconds)"
    )

    # Request queue configuration
    queue_max_size: int = Field(default=100, ge=1, description="Maximum queued requests per user")
    queue_ttl_seconds: int = Field(
        default=3600, ge=60, description="Time-to-live for queue entries (seconds)"
    )

    # Storage / jobs
    kv_url: str = Field(
        default="memory://",
        description="Key-value store backend (memory://, redis://host:port/db)",
    )
    jobs_enabled: bool = Field(
        default=False,
        description="Schedule an arq queue-drain job after each queued submission",
    )

    # Email configuration (Resend)
    resend_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Resend API key for passcode emails",
    )
    email_from: str = Field(
        default="MYA <noreply@mya.dev>",
        description="From address for passcode emails",
    )

    @model_validator(mode="after")
    def check_secret_fallbacks(self) -> "Settings":
        """Fall back to non-prefixed env vars for secrets."""
        if not self.jwt_secret.get_secret_value():
            fallback = os.environ.get("JWT_SECRET", "")
            if fallback:
                object.__setattr__(self, "jwt_secret", SecretStr(fallback))

        if not self.llm_api_token.get_secret_value():
            fallback = os.environ.get("LLM_API_TOKEN", "")
            if fallback:
                object.__setattr__(self, "llm_api_token", SecretStr(fallback))

        return self

    @model_validator(mode="after")
    def validate_security_settings(self) -> "Settings":
        """Prevent insecure settings in production."""
        if self.environment == "production" and not self.jwt_secret.get_secret_value():
            raise ValueError(
                "CRITICAL: an empty JWT secret is forbidden in production. "
                "Set MYA_JWT_SECRET (or JWT_SECRET) to a secure value."
            )
        return self

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


# Global settings instance
settings = Settings()
