from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./kitchenflow.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Kitchenflow"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:8081",
    ]

    # Change feed (Redis pub/sub when REDIS_URL is set, in-process otherwise)
    REDIS_URL: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    CHANGE_FEED_NAMESPACE: str = "kitchenflow"
    CHANGE_FEED_HISTORY_SIZE: int = 100  # Events kept per client relay
    CHANGE_FEED_CHANNEL_ERROR_BACKOFF: float = 5.0  # Seconds after a hard channel error
    CHANGE_FEED_TIMEOUT_BACKOFF: float = 3.0  # Seconds after a transport timeout
    CHANGE_FEED_QUEUE_SIZE: int = 1000  # Per-listener buffer of the in-process feed

    # Availability
    LOW_STOCK_THRESHOLD: int = 1  # Producible portions at or below this are low_stock
    AVAILABILITY_REFRESH_INTERVAL_SECONDS: float = 5.0  # Debounce per client
    STOCK_RESERVATION_ENABLED: bool = True  # Compare-and-decrement batches on add_item
    ALLOW_DISHES_WITHOUT_RECIPE: bool = False  # If True, dishes with no recipe skip the stock gate

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "UTC"
    BATCH_EXPIRY_CHECK_MINUTES: int = 5  # How often expired batches are deactivated

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return list(self.CORS_ORIGINS)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
