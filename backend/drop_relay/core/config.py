# drop_relay/core/config.py
"""Relay configuration loaded from environment variables (or a .env file)."""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings for the relay.

    Environment Variables:
        DATABASE_URL: SQLAlchemy URL (SQLite by default, PostgreSQL in production)
        KEYSERVER_URL: VKS keyserver base URL
        KEYSERVER_TIMEOUT_SECONDS: Bound on a single keyserver request
        RETENTION_WINDOW_SECONDS: Age after which undelivered mail is swept
        CACHE_TTL_SECONDS: Lifetime of a cached key validation
        MAX_PAYLOAD_BYTES: Upper bound for encrypted_data
        TIMESTAMP_SKEW_SECONDS: Allowed clock skew for signed timestamps
        SWEEP_INTERVAL_SECONDS: Period of the retention sweeper
        RATE_LIMIT: slowapi limit string applied to send/poll
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database
    DATABASE_URL: str = "sqlite:///messages.db"
    DATABASE_ECHO: bool = False

    # Keyserver
    KEYSERVER_URL: str = "https://keys.openpgp.org"
    KEYSERVER_TIMEOUT_SECONDS: float = 10.0

    # Relay policy
    RETENTION_WINDOW_SECONDS: int = 7 * 24 * 60 * 60
    CACHE_TTL_SECONDS: int = 600
    MAX_PAYLOAD_BYTES: int = 1024 * 1024
    TIMESTAMP_SKEW_SECONDS: int = 300
    SWEEP_INTERVAL_SECONDS: int = 24 * 60 * 60
    SWEEPER_ENABLED: bool = True

    # Rate limiting
    RATE_LIMIT: str = "60/minute"
    RATE_LIMIT_ENABLED: bool = True

    # Application
    CORS_ORIGINS: List[str] = ["*"]
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    HOST: str = "0.0.0.0"
    PORT: int = 8787


@lru_cache()
def get_settings() -> Settings:
    return Settings()
