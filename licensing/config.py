"""
Runtime configuration for the licensing backend.

Values come from environment variables. Functions are used where a value may
change between calls (tests, kill switches); module constants otherwise.

Configuration (environment variables):
- DATABASE_URL:                   SQLAlchemy URL (default: local sqlite file)
- REDIS_URL:                      Bot status cache; in-memory fallback when unset
- BOT_STATUS_CACHE_TTL_SECONDS:   Cache TTL for bot status records (default: "30")
- TRIAL_DURATION_DAYS:            Length of a new trial license (default: "30")
- MAINTENANCE_ENABLED:            Kill switch for the maintenance loop (default: "true")
- MAINTENANCE_DAILY_HOUR_UTC:     Wall-clock hour of the daily reset (default: "0")
- MAINTENANCE_WEEKLY_WEEKDAY:     Weekday of the statistics run, Monday=0 (default: "0")
"""

import os
from typing import Optional

DEFAULT_DATABASE_URL = "sqlite:///./licensing.db"


def get_database_url() -> str:
    """Database URL with the legacy postgres:// scheme normalized."""
    url = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def get_redis_url() -> Optional[str]:
    return os.getenv("REDIS_URL") or None


def get_bot_status_cache_ttl() -> int:
    return int(os.getenv("BOT_STATUS_CACHE_TTL_SECONDS", "30"))


def get_trial_duration_days() -> int:
    return int(os.getenv("TRIAL_DURATION_DAYS", "30"))


def is_maintenance_enabled() -> bool:
    return os.getenv("MAINTENANCE_ENABLED", "true").lower() in ("true", "1", "yes")


def get_daily_maintenance_hour() -> int:
    hour = int(os.getenv("MAINTENANCE_DAILY_HOUR_UTC", "0"))
    return max(0, min(hour, 23))


def get_weekly_maintenance_weekday() -> int:
    weekday = int(os.getenv("MAINTENANCE_WEEKLY_WEEKDAY", "0"))
    return max(0, min(weekday, 6))
