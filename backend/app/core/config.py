"""
Core configuration for StatSnap.
Uses Pydantic Settings for environment variable management.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from pydantic import model_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_empty_env_values(cls, data):
        if not isinstance(data, dict):
            return data
        # Hosting platforms sometimes inject empty-string env vars.
        # Treat them as "unset" so typed fields (bool/int/float) don't crash on startup.
        return {key: value for key, value in data.items() if value != ""}

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "info"

    # Database
    DATABASE_URL: str = "postgresql://localhost:5432/statsnap"

    # CORS
    FRONTEND_URL: str = "http://localhost:3000"

    # Google OAuth client used to refresh stored GA4 access tokens.
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_TOKEN_URI: str = "https://oauth2.googleapis.com/token"

    # User auth. Tokens are issued by the external identity provider;
    # we only verify the signature and read `sub` as the user id.
    AUTH_JWT_SECRET: str = ""
    AUTH_JWT_ALGORITHM: str = "HS256"
    AUTH_JWT_AUDIENCE: str = "authenticated"

    # Shared secret presented by the external cron trigger.
    CRON_SECRET: str = ""

    # On-demand sync
    SYNC_DEFAULT_DAYS: int = 30
    SYNC_MAX_DAYS: int = 365
    # When false, an already-stored day keeps the top pages/referrers from its first sync.
    SYNC_REPLACE_CHILD_ROWS: bool = True

    # Event detection looks back over this many days ending today.
    EVENT_DETECTION_WINDOW_DAYS: int = 30

    # Scheduled refresh (worker + cron endpoint)
    SCHEDULED_SYNC_ENABLED: bool = True
    # Short trailing window to pick up late-arriving GA4 data.
    SCHEDULED_SYNC_WINDOW_DAYS: int = 2
    SCHEDULED_SYNC_INTERVAL_MINUTES: int = 360
    # 1 keeps the batch strictly sequential.
    SCHEDULED_SYNC_MAX_CONCURRENCY: int = 1


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
