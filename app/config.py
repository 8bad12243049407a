import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./detailing.db")

# "development" enables the admin session bypass in auth.is_session_valid
NODE_ENV = os.getenv("NODE_ENV", "production").lower()

# Square Configuration
SQUARE_ENVIRONMENT = os.getenv("SQUARE_ENVIRONMENT", "sandbox")  # sandbox or production
SQUARE_ACCESS_TOKEN = os.getenv("SQUARE_ACCESS_TOKEN")
SQUARE_LOCATION_ID = os.getenv("SQUARE_LOCATION_ID")
SQUARE_API_VERSION = os.getenv("SQUARE_API_VERSION", "2024-12-18")
# Cached location / team member ids are refreshed after this many seconds
SQUARE_ID_CACHE_TTL = int(os.getenv("SQUARE_ID_CACHE_TTL", "3600"))

# Admin session
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")
if not ADMIN_PASSWORD:
    import warnings

    warnings.warn(
        "ADMIN_PASSWORD not set! Using insecure default - DO NOT USE IN PRODUCTION",
        RuntimeWarning,
        stacklevel=2,
    )
    ADMIN_PASSWORD = "admin123"  # noqa: S105 - Dev fallback only

SESSION_COOKIE_NAME = "admin_session"
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 24)))  # 24 hours
MAX_MEMORY_SESSIONS = int(os.getenv("MAX_MEMORY_SESSIONS", "100"))

# Bearer secret for the scheduled no-show job
CRON_SECRET = os.getenv("CRON_SECRET")

# Day boundaries for availability are computed in this zone
BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "UTC")

# Catalog cache TTL in seconds
CATALOG_CACHE_TTL = int(os.getenv("CATALOG_CACHE_TTL", "300"))


def is_development() -> bool:
    return NODE_ENV == "development"


def is_production() -> bool:
    return NODE_ENV == "production"

# Redis (optional): sessions, login rate limits and the catalog cache
REDIS_URL = os.getenv("REDIS_URL")
REDIS_HOST = os.getenv("REDIS_HOST")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
REDIS_DB = int(os.getenv("REDIS_DB", "0"))
REDIS_SSL = os.getenv("REDIS_SSL", "false").lower() == "true"

# Database pool (ignored for SQLite)
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "300"))
DB_SLOW_QUERY_THRESHOLD = float(os.getenv("DB_SLOW_QUERY_THRESHOLD", "1.0"))
