# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for CampusID.
Settings are loaded from environment variables with sensible defaults.

The Settings class is the main entry point and aggregates all subsettings.
A singleton instance is provided via get_settings() for dependency injection.

Example:
    >>> from campusid.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> print(settings.environment)
    'development'
"""

from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "change-this-in-production"


class DatabaseSettings(BaseSettings):
    """Relational store configuration.

    Holds accounts, parent-student relationships and parent invitations.

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        dsn: Full async URL, used as-is when set (e.g. SQLite in tests).
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
        auto_create_schema: Create tables at startup instead of running migrations.
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        extra="ignore",
    )

    user: str = "campusid"
    password: SecretStr = SecretStr("campusid_password")
    host: str = "localhost"
    port: int = 5432
    database: str = "campusid"
    dsn: str | None = None
    pool_size: int = 10
    max_overflow: int = 20
    auto_create_schema: bool = False

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        if self.dsn:
            return self.dsn
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class JWTSettings(BaseSettings):
    """Session credential configuration.

    Attributes:
        secret_key: Secret key for signing tokens.
        algorithm: JWT signing algorithm.
        access_token_expire_minutes: Session lifetime, 24 hours by default.
        issuer: Value of the ``iss`` claim.
    """

    model_config = SettingsConfigDict(
        env_prefix="JWT_",
        extra="ignore",
    )

    secret_key: SecretStr = SecretStr(DEFAULT_JWT_SECRET)
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 24 * 60
    issuer: str = "campusid"


class IdentityProviderSettings(BaseSettings):
    """Managed identity provider (GoTrue-compatible auth API) configuration.

    Attributes:
        url: Base URL of the auth API, e.g. https://<project>.supabase.co/auth/v1
        anon_key: Public API key sent with end-user calls.
        service_key: Service-role key for administrative calls.
        timeout: Per-request timeout in seconds.
        redirect_url: Where provider emails send users back to.
    """

    model_config = SettingsConfigDict(
        env_prefix="IDP_",
        extra="ignore",
    )

    url: str = "http://localhost:9999"
    anon_key: SecretStr = SecretStr("")
    service_key: SecretStr = SecretStr("")
    timeout: float = 10.0
    redirect_url: str = "http://localhost:3000/auth/callback"


class SMTPSettings(BaseSettings):
    """Outbound email configuration for invitation notices.

    Attributes:
        host: SMTP server hostname. Email is disabled when unset.
        port: SMTP server port.
        username: SMTP authentication username.
        password: SMTP authentication password.
        use_tls: Use STARTTLS.
        from_email: Sender address.
        from_name: Sender display name.
        timeout: Connection timeout in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        extra="ignore",
    )

    host: str | None = None
    port: int = 587
    username: str | None = None
    password: SecretStr | None = None
    use_tls: bool = True
    from_email: str | None = None
    from_name: str = "CampusID"
    timeout: float = 10.0

    @property
    def is_configured(self) -> bool:
        """Check whether enough settings are present to send mail."""
        return bool(self.host and self.from_email)


class InvitationSettings(BaseSettings):
    """Parent invitation configuration.

    Attributes:
        expire_days: Days a parent invitation stays redeemable.
        frontend_url: Base URL used to build confirmation links.
    """

    model_config = SettingsConfigDict(
        env_prefix="INVITATION_",
        extra="ignore",
    )

    expire_days: int = 7
    frontend_url: str = "http://localhost:3000"


class RateLimitSettings(BaseSettings):
    """Rate limiting configuration.

    Attributes:
        requests_per_minute: Default maximum requests per minute per client.
        login_per_minute: Maximum login attempts per minute per IP.
        enabled: Whether limits are enforced.
    """

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        extra="ignore",
    )

    requests_per_minute: int = 60
    login_per_minute: int = 5
    enabled: bool = True


class CORSSettings(BaseSettings):
    """CORS configuration for API.

    Attributes:
        origins: Comma-separated list of allowed origins.
        allow_credentials: Whether to allow credentials.
        allow_methods: Allowed HTTP methods.
        allow_headers: Allowed HTTP headers.
    """

    model_config = SettingsConfigDict(
        env_prefix="CORS_",
        extra="ignore",
    )

    origins: str = "http://localhost:3000,http://localhost:5173"
    allow_credentials: bool = True
    allow_methods: list[str] = ["*"]
    allow_headers: list[str] = ["*"]

    @property
    def origins_list(self) -> list[str]:
        """Parse origins string into a list."""
        return [origin.strip() for origin in self.origins.split(",") if origin.strip()]


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        database: Relational store settings.
        jwt: Session credential settings.
        identity_provider: Managed identity provider settings.
        smtp: Outbound email settings.
        invitation: Parent invitation settings.
        rate_limit: Rate limiting settings.
        cors: CORS settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    environment: Literal["development", "test", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    jwt: JWTSettings = Field(default_factory=JWTSettings)
    identity_provider: IdentityProviderSettings = Field(default_factory=IdentityProviderSettings)
    smtp: SMTPSettings = Field(default_factory=SMTPSettings)
    invitation: InvitationSettings = Field(default_factory=InvitationSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cors: CORSSettings = Field(default_factory=CORSSettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Validate that production settings are properly configured.

        Raises:
            ValueError: If running in production with insecure defaults.
        """
        if self.environment == "production":
            if self.jwt.secret_key.get_secret_value() == DEFAULT_JWT_SECRET:
                raise ValueError(
                    "JWT secret key must be changed from default in production. "
                    "Set JWT_SECRET_KEY environment variable."
                )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this if you need to reload settings from environment.
    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
