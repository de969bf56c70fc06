"""Application configuration settings.

This module defines the ``Settings`` class using ``pydantic-settings`` to
load configuration from environment variables (and an optional ``.env``
file). It centralises all runtime configuration for the service, such as the
remote catalog endpoint, the cache freshness policy and the civil time zone
used for every weekday/time-of-day derivation.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration values loaded from environment variables.

    Environment variable names map to fields by alias. See the field
    definitions for documentation. Sensible defaults are provided for every
    field so the availability engine can be used without a remote backend.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    # Remote catalog
    supabase_url: str = Field(
        default="",
        alias="SUPABASE_URL",
        description="Base URL of the PostgREST/Supabase project, e.g. https://xyz.supabase.co",
    )
    supabase_key: str = Field(
        default="",
        alias="SUPABASE_KEY",
        description="Anon or service key sent as both the apikey header and bearer token.",
    )
    http_timeout_seconds: float = Field(default=10.0, alias="HTTP_TIMEOUT_SECONDS")
    http_max_retries: int = Field(
        default=3,
        alias="HTTP_MAX_RETRIES",
        description="Number of retries on 429/5xx responses before giving up.",
    )
    http_backoff_seconds: float = Field(default=0.5, alias="HTTP_BACKOFF_SECONDS")

    # Local replica
    cache_db_path: str = Field(default="roomspots.db", alias="CACHE_DB_PATH")
    cache_freshness_hours: float = Field(
        default=24.0,
        alias="CACHE_FRESHNESS_HOURS",
        description="Maximum age of a cached building before it is refreshed from the remote catalog.",
    )
    cache_batch_size: int = Field(
        default=10,
        alias="CACHE_BATCH_SIZE",
        description="Number of buildings processed per batch during a cache update.",
    )
    max_concurrent_fetches: int = Field(
        default=4,
        alias="MAX_CONCURRENT_FETCHES",
        description="Upper bound on buildings refreshed concurrently within one batch.",
    )
    refresh_on_startup: bool = Field(default=False, alias="REFRESH_ON_STARTUP")

    # Availability
    civil_timezone: str = Field(
        default="America/Chicago",
        alias="CIVIL_TIMEZONE",
        description="Time zone used for all weekday and time-of-day derivations.",
    )

    # Paging
    page_size: int = Field(default=25, alias="PAGE_SIZE")


# Instantiate settings at module import time. This allows other modules to
# import ``settings`` directly without repeatedly reading environment variables.
settings = Settings()
