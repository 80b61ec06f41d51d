"""Configuration for the short-link API and the click-ingestion consumer.

All tunables live on one pydantic-settings ``Settings`` model, read from the
environment (and ``.env``) with upper-case names.

Settings Groups
===============
::
    Settings
    ├─ App          APP_NAME, BASE_URL, PASSWORD_PAGE_URL, LOG_LEVEL, METRICS_ENABLED
    ├─ PostgreSQL   DATABASE_URL, DATABASE_POOL_SIZE, DATABASE_MAX_OVERFLOW
    ├─ Redis        REDIS_URL, CACHE_KEY_PREFIX, CACHE_DEFAULT_TTL_SECONDS
    ├─ Kafka        KAFKA_BOOTSTRAP_SERVERS, KAFKA_CLICK_TOPIC, KAFKA_CONSUMER_GROUP,
    │               KAFKA_REQUEST_TIMEOUT_MS, KAFKA_RECONNECT_INTERVAL_SECONDS
    ├─ Dispatcher   CLICK_QUEUE_MAX_SIZE, CLICK_WORKER_COUNT, CLICK_RETRY_*,
    │               CLICK_PUBLISH_TIMEOUT_SECONDS
    ├─ Consumer     CONSUMER_MAX_RETRIES, CONSUMER_RETRY_BACKOFF_SECONDS
    ├─ Passwords    BCRYPT_ROUNDS, PASSWORD_VERIFY_TIMEOUT_SECONDS
    ├─ Preview      PREVIEW_ENABLED, PREVIEW_TIMEOUT_SECONDS, PREVIEW_MAX_BYTES
    └─ Analytics    STATS_DEFAULT_WINDOW_DAYS, STATS_MAX_WINDOW_DAYS, REFERRER_TOP_N

How to Use
===========
**In a standalone process**::
    from shortlink.config import get_settings
    settings = get_settings()

**In tests**::
    settings = Settings(DATABASE_URL="sqlite+aiosqlite://", METRICS_ENABLED=False)

Key Behaviours
===============
- ``get_settings()`` builds the model once per process.
- Components receive a Settings instance explicitly; only the composition
  root and the consumer entry point call ``get_settings()``.
"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "shortlink"
    BASE_URL: str = "http://localhost:8080"
    # Gated redirects land on {PASSWORD_PAGE_URL}/{link_id}
    PASSWORD_PAGE_URL: str = "http://localhost:5173/password"
    LOG_LEVEL: str = "INFO"
    METRICS_ENABLED: bool = True

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://shortlink:shortlink@db:5432/shortlink"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis resolution cache
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_KEY_PREFIX: str = "link"
    CACHE_DEFAULT_TTL_SECONDS: int = 3600

    # Kafka click pipeline
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:9092"
    KAFKA_CLICK_TOPIC: str = "click-events"
    KAFKA_CONSUMER_GROUP: str = "analytics-group"
    KAFKA_CLIENT_ID: str = "shortlink"
    KAFKA_REQUEST_TIMEOUT_MS: int = 5000
    # Minimum gap between producer reconnect attempts after a failed start
    KAFKA_RECONNECT_INTERVAL_SECONDS: float = 30.0

    # Link ids
    LINK_ID_LENGTH: int = 6
    LINK_ID_MAX_ATTEMPTS: int = 5

    # Background click dispatcher (the queue bound applies to events, not counts)
    CLICK_QUEUE_MAX_SIZE: int = 10_000
    CLICK_WORKER_COUNT: int = 4
    CLICK_RETRY_ATTEMPTS: int = 3
    CLICK_RETRY_BACKOFF_SECONDS: float = 0.05
    CLICK_PUBLISH_TIMEOUT_SECONDS: float = 2.0
    CLICK_DRAIN_TIMEOUT_SECONDS: float = 5.0

    # Event consumer
    CONSUMER_MAX_RETRIES: int = 3
    CONSUMER_RETRY_BACKOFF_SECONDS: float = 0.5
    CONSUMER_METRICS_PORT: int = 9200

    # Password gating
    BCRYPT_ROUNDS: int = 12
    PASSWORD_VERIFY_TIMEOUT_SECONDS: float = 3.0

    # Link preview enrichment
    PREVIEW_ENABLED: bool = True
    PREVIEW_TIMEOUT_SECONDS: float = 5.0
    PREVIEW_MAX_BYTES: int = 512_000

    # Analytics
    STATS_DEFAULT_WINDOW_DAYS: int = 30
    STATS_MAX_WINDOW_DAYS: int = 365
    REFERRER_TOP_N: int = 10

    BULK_MAX_URLS: int = 100

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
