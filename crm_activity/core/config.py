from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = ConfigDict(env_file=".env", case_sensitive=True)

    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Upstream CRM API that owns reminders and meetings
    ACTIVITY_API_BASE_URL: str = "http://localhost:4000/api"
    REQUEST_TIMEOUT_SECONDS: float = 15.0

    # IANA zone used to interpret untagged timestamps; empty = host zone
    LOCAL_TIMEZONE: str = ""

    # Aggregator timing
    RELATIVE_TIME_TICK_SECONDS: int = 30
    FILTER_DEBOUNCE_MS: int = 250
    OVERDUE_LOOKBACK_DAYS: int = 180

    # History panel defaults
    HISTORY_DEFAULT_DAYS: int = 30
    HISTORY_PAGE_SIZE: int = 10

    # Redis configuration for the overview totals cache
    REDIS_URL: str = ""
    SUMMARY_CACHE_TTL: int = 10  # seconds

    # CORS configuration: comma-separated origins
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8080"
    RATE_LIMIT: str = "120/minute"

    # Per-token sessions: idle ones are closed, the oldest evicted past the cap
    SESSION_MAX_COUNT: int = 500
    SESSION_IDLE_SECONDS: int = 1800


settings = Settings()
