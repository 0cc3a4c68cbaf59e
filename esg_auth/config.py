"""Application configuration settings."""

import os
import secrets
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with validation and defaults."""

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./esg_auth.db",
        description="Database connection URL"
    )
    database_pool_size: int = Field(default=5, description="Connection pool size")
    database_max_overflow: int = Field(default=10, description="Pool overflow")

    # Security Configuration
    secret_key: str = Field(
        default_factory=lambda: secrets.token_urlsafe(32),
        description="Secret key for signing session tokens"
    )
    algorithm: str = Field(default="HS256", description="JWT algorithm")

    # WebAuthn Configuration
    rp_id: str = Field(default="localhost", description="Relying Party ID")
    rp_name: str = Field(default="ESG-Lite", description="Relying Party Name")
    origin: str = Field(
        default="http://localhost:3000", description="Application origin URL"
    )
    extra_origins: List[str] = Field(
        default_factory=list,
        description="Additional origins accepted during WebAuthn verification"
    )
    challenge_ttl_seconds: int = Field(
        default=300, description="Lifetime of a registration/authentication challenge"
    )
    webauthn_timeout_ms: int = Field(
        default=60000, description="Browser ceremony timeout in milliseconds"
    )
    webauthn_allow_zero_counter: bool = Field(
        default=False,
        description="Accept authenticators that never increment the signature counter"
    )

    # Sessions
    session_max_age_seconds: int = Field(
        default=30 * 24 * 60 * 60, description="End-user session lifetime"
    )
    admin_session_max_age_seconds: int = Field(
        default=30 * 60, description="Admin session lifetime"
    )
    session_cookie_name: str = Field(default="esg_session")
    admin_session_cookie_name: str = Field(default="esg_admin_session")
    cookie_secure: bool = Field(default=True, description="Set the Secure cookie flag")
    cookie_domain: Optional[str] = Field(default=None, description="Cookie domain")

    # Recovery codes
    recovery_code_count: int = Field(default=8, description="Codes per batch")
    recovery_code_low_watermark: int = Field(
        default=2, description="Warn when this many codes or fewer remain"
    )
    recovery_code_bcrypt_rounds: int = Field(
        default=10, description="bcrypt work factor for recovery code hashes"
    )

    # Admin passwords
    password_min_length: int = Field(default=12, description="Minimum admin password length")
    password_bcrypt_rounds: int = Field(
        default=12, description="bcrypt work factor for admin password hashes"
    )

    # Magic link
    app_base_url: str = Field(
        default="http://localhost:3000", description="Public base URL used in emails"
    )
    magic_link_expires_minutes: int = Field(default=15)
    magic_link_rate_window_minutes: int = Field(default=60)
    magic_link_max_email_requests: int = Field(default=5)
    magic_link_max_ip_requests: int = Field(default=10)
    magic_link_resend_cooldown_seconds: int = Field(default=60)
    magic_link_default_redirect: str = Field(default="/?view=dashboard")
    magic_link_error_redirect: str = Field(
        default="/sign-in", description="Landing page for a failed sign-in link"
    )

    # Outbound email
    sendgrid_api_key: Optional[str] = Field(default=None, description="SendGrid API key")
    email_from: str = Field(default="no-reply@esg-lite.ru", description="Sender address")

    # Environment Configuration
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Debug mode")

    # CORS Configuration
    allowed_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )
    allowed_methods: List[str] = Field(
        default=["GET", "POST", "PATCH", "DELETE"],
        description="Allowed HTTP methods"
    )
    allowed_headers: List[str] = Field(
        default=["*"], description="Allowed headers"
    )

    # Rate Limiting
    rate_limit_enabled: bool = Field(default=True, description="Enable slowapi limits")
    rate_limit_auth: str = Field(
        default="20/minute", description="Limit for credential-checking endpoints"
    )

    # Background maintenance
    enable_background_tasks: bool = Field(default=True)
    cleanup_interval_seconds: int = Field(default=900)

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("environment")
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed = ["development", "staging", "production"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @field_validator("log_level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("origin", "app_base_url")
    def validate_origin(cls, v: str) -> str:
        """Validate origin URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Origin must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("secret_key")
    def validate_secret_key(cls, v: str) -> str:
        if v == "change-this-in-production":
            if os.getenv("ESG_AUTH_ENVIRONMENT", "development").lower() == "production":
                raise ValueError("Secret key must be changed in production")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def database_url_async(self) -> str:
        """Get async database URL."""
        if self.database_url.startswith("sqlite:///"):
            return self.database_url.replace("sqlite:///", "sqlite+aiosqlite:///")
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://")
        return self.database_url

    @property
    def expected_origins(self) -> List[str]:
        """Origins accepted in clientDataJSON."""
        return [self.origin, *[o.rstrip("/") for o in self.extra_origins]]

    def get_database_config(self) -> dict:
        """Get database engine configuration."""
        config = {"url": self.database_url_async, "pool_pre_ping": True}
        if not self.database_url_async.startswith("sqlite"):
            config.update({
                "pool_size": self.database_pool_size,
                "max_overflow": self.database_max_overflow,
                "pool_recycle": 3600,
            })
        return config

    def get_cookie_config(self, admin: bool = False) -> dict:
        """Cookie attributes for session cookies."""
        return {
            "key": self.admin_session_cookie_name if admin else self.session_cookie_name,
            "httponly": True,
            "secure": self.cookie_secure,
            "samesite": "lax",
            "path": "/",
            "domain": self.cookie_domain,
            "max_age": (
                self.admin_session_max_age_seconds if admin else self.session_max_age_seconds
            ),
        }

    class Config:
        env_prefix = "ESG_AUTH_"
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
