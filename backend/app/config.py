"""
backend/app/config.py

Purpose:
    Central settings loading for backend services.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB: str = "pitwall"
    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    # Shared secret for admin sync endpoints (X-Sync-Key header)
    SYNC_API_KEY: str = ""

    # Ergast-compatible statistics provider (Jolpica mirror)
    ERGAST_BASE_URL: str = "https://api.jolpi.ca/ergast/f1"
    ERGAST_TIMEOUT_SECONDS: float = 15.0
    ERGAST_MAX_RETRIES: int = 3
    ERGAST_BASE_DELAY_SECONDS: float = 2.0
    ERGAST_RATE_LIMIT_RPM: int = 60
    ERGAST_PAGE_LIMIT: int = 100

    # Provider response cache TTLs (seconds)
    ERGAST_CACHE_TTL_TEAMS: int = 24 * 60 * 60
    ERGAST_CACHE_TTL_COMPETITORS: int = 24 * 60 * 60
    ERGAST_CACHE_TTL_VENUES: int = 7 * 24 * 60 * 60
    ERGAST_CACHE_TTL_SCHEDULE: int = 24 * 60 * 60
    ERGAST_CACHE_TTL_STANDINGS: int = 60 * 60
    ERGAST_CACHE_TTL_RESULTS: int = 60 * 60

    # Result document
    RESULT_TOP_N: int = 10

    # Automation (scheduler jobs are only registered when enabled)
    AUTOMATION_ENABLED: bool = False
    SEASON_SYNC_INTERVAL_HOURS: int = 6
    SEASON_SYNC_MIN_AGE_MINUTES: int = 60
    RESULT_RESOLVER_INTERVAL_MINUTES: int = 30
    RESULT_RESOLVER_GRACE_HOURS: int = 3  # race start + grace before results are expected
    RESULT_RESOLVER_LOOKBACK_DAYS: int = 14

    # Event bus (in-process)
    EVENT_BUS_ENABLED: bool = True
    EVENT_BUS_INGRESS_QUEUE_MAXSIZE: int = 1000
    EVENT_BUS_HANDLER_QUEUE_MAXSIZE: int = 200
    EVENT_BUS_HANDLER_DEFAULT_CONCURRENCY: int = 1
    EVENT_BUS_ERROR_BUFFER_SIZE: int = 100
    EVENT_HANDLER_SCORING_ENABLED: bool = True

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }


settings = Settings()
