"""Application configuration using pydantic-settings."""
from functools import lru_cache
from urllib.parse import urlparse

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    database_url: str

    # Session tokens - HS256 JWTs issued by the auth provider
    jwt_secret: str = Field(default="", validation_alias="JWT_SECRET")
    jwt_audience: str = Field(default="authenticated", validation_alias="JWT_AUDIENCE")

    # Development mode - bypasses auth for local development
    dev_mode: bool = Field(default=False, validation_alias="DEV_MODE")
    dev_user_id: str = Field(
        default="dev-local-development-user", validation_alias="DEV_USER_ID",
    )

    # CORS - comma-separated list of allowed origins (stored as string, parsed via property)
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        validation_alias="CORS_ORIGINS",
    )

    # Redis - change notification channel
    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")
    redis_enabled: bool = Field(default=True, validation_alias="REDIS_ENABLED")
    redis_pool_size: int = Field(default=20, validation_alias="REDIS_POOL_SIZE")
    change_channel_prefix: str = Field(
        default="bookmarks", validation_alias="CHANGE_CHANNEL_PREFIX",
    )

    # Sync store behavior
    error_display_seconds: float = Field(
        default=3.0, ge=0, validation_alias="ERROR_DISPLAY_SECONDS",
    )
    rollback_failed_deletes: bool = Field(
        default=False, validation_alias="ROLLBACK_FAILED_DELETES",
    )
    favicon_url_template: str = Field(
        default="https://www.google.com/s2/favicons?domain={domain}&sz=128",
        validation_alias="FAVICON_URL_TEMPLATE",
    )

    # Field length limits
    max_title_length: int = Field(default=500, validation_alias="MAX_TITLE_LENGTH")
    max_description_length: int = Field(
        default=2000, validation_alias="MAX_DESCRIPTION_LENGTH",
    )

    @model_validator(mode="after")
    def validate_dev_mode_security(self) -> "Settings":
        """
        Prevent DEV_MODE from being enabled with a production database.

        DEV_MODE completely bypasses authentication, so it may only be used with
        local development databases.
        """
        if not self.dev_mode:
            return self

        # SQLite URLs have no host and are always local
        if self.database_url.startswith("sqlite"):
            return self

        try:
            hostname = urlparse(self.database_url).hostname or ""
        except ValueError:
            # If we can't parse the URL, block DEV_MODE (fail-safe)
            hostname = ""

        local_hosts = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}
        if hostname.lower() not in local_hosts:
            raise ValueError(
                f"DEV_MODE cannot be enabled with a non-local database. "
                f"Database host '{hostname}' appears to be a production database. "
                f"DEV_MODE bypasses all authentication and must only be used locally.",
            )

        return self

    @property
    def cors_origins(self) -> list[str]:
        """Parse comma-separated CORS origins string into a list."""
        if not self.cors_origins_str:
            return []
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
