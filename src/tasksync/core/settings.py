"""Application settings and configuration.

This module defines all configuration options for the tasksync service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    Synchronization code does not read this object directly; see
    ``tasksync.services.sync_config.load_sync_config``.
    """

    # Application metadata
    app_name: str = Field(default="tasksync", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./tasksync.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Remote authority
    api_base_url: str = Field(default="http://localhost:3000/api", alias="API_BASE_URL")
    sync_client_id: str = Field(default="tasksync-local", alias="SYNC_CLIENT_ID")
    sync_shared_secret: str | None = Field(default=None, alias="SYNC_SHARED_SECRET")
    sync_token_ttl_seconds: int = Field(default=300, alias="SYNC_TOKEN_TTL_SECONDS")

    # Sync engine tuning
    sync_batch_size: int = Field(default=50, ge=1, alias="SYNC_BATCH_SIZE")
    sync_retry_attempts: int = Field(default=3, ge=0, alias="SYNC_RETRY_ATTEMPTS")
    sync_batch_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        alias="SYNC_BATCH_TIMEOUT_SECONDS",
    )
    sync_probe_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        alias="SYNC_PROBE_TIMEOUT_SECONDS",
    )

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def remote_base_url(self) -> str:
        """Return the remote base URL without a trailing slash."""
        return self.api_base_url.rstrip("/")


settings = Settings()
