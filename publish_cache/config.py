# publish_cache/config.py
"""Environment-driven settings for the publish cache service."""
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("POSTGRES_URL")
if not DATABASE_URL:
    raise RuntimeError("POSTGRES_URL not set")

# Normalize SQLAlchemy URL scheme (SQLAlchemy 2.x doesn't accept 'postgres://')
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+psycopg2://", 1)

DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", 5))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", 10))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

ADMIN_SECRET = os.getenv("ADMIN_SECRET")
CRON_SECRET = os.getenv("CRON_SECRET")

# "country:category" pairs that are always rebuilt by the scheduled job
PUBLISH_SEGMENTS = os.getenv("PUBLISH_SEGMENTS", "Colombia:para la venta")

REBUILD_INTERVAL_HOURS = float(os.getenv("REBUILD_INTERVAL_HOURS", "1"))
REBUILD_STALE_AFTER_MINUTES = int(os.getenv("REBUILD_STALE_AFTER_MINUTES", "30"))
# the worker scheduler always runs; this only switches the interval rebuild
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "1") == "1"

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

INSERT_BATCH_SIZE = 100
PAGE_SIZE = 100


def configured_segments(raw: str = None):
    """Parse ``PUBLISH_SEGMENTS`` into (country_name, category_name) pairs."""
    if raw is None:
        raw = PUBLISH_SEGMENTS
    pairs = []
    for chunk in raw.split(";"):
        if ":" not in chunk:
            continue
        country, category = chunk.split(":", 1)
        if country.strip() and category.strip():
            pairs.append((country.strip(), category.strip()))
    return pairs
