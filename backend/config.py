import os
from pathlib import Path
from urllib.parse import urlparse
from dotenv import load_dotenv

from constants import DEFAULT_CATEGORY_CAPACITY, DEFAULT_QUEUE_MAX_SIZE

# Load .env file from project root
ENV_PATH = Path(__file__).parent.parent / ".env"
load_dotenv(ENV_PATH)

# Server settings
PORT = int(os.getenv("PORT", "8000"))
HOST = os.getenv("HOST", "0.0.0.0")
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Database - parse DATABASE_URL for PostgreSQL
DATABASE_URL = os.getenv("DATABASE_URL", "")

def get_db_config():
    """Parse DATABASE_URL into connection parameters."""
    if not DATABASE_URL:
        raise ValueError("DATABASE_URL environment variable is required")

    parsed = urlparse(DATABASE_URL)
    return {
        "host": parsed.hostname,
        "port": parsed.port or 5432,
        "database": parsed.path[1:],  # Remove leading /
        "user": parsed.username,
        "password": parsed.password,
    }


def parse_category_capacity(raw: str) -> dict[str, int]:
    """Parse "masculino:6,feminino:6" into {"masculino": 6, "feminino": 6}."""
    capacity = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        name, sep, value = item.partition(":")
        if not sep or not name.strip():
            raise ValueError(f"Invalid category capacity '{item}', expected name:count")
        count = int(value)
        if count < 1:
            raise ValueError(f"Capacity for '{name.strip()}' must be positive")
        capacity[name.strip().lower()] = count
    if not capacity:
        raise ValueError("At least one queue category is required")
    return capacity


# Admin
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")

# Priority queue
PRIORITY_TIMER_DURATION_SECONDS = int(os.getenv("PRIORITY_TIMER_DURATION_SECONDS", "86400"))
QUEUE_MAX_SIZE = int(os.getenv("QUEUE_MAX_SIZE", str(DEFAULT_QUEUE_MAX_SIZE)))
QUEUE_CATEGORY_CAPACITY = parse_category_capacity(
    os.getenv("QUEUE_CATEGORY_CAPACITY", DEFAULT_CATEGORY_CAPACITY)
)
QUEUE_IDLE_THRESHOLD_MINUTES = int(os.getenv("QUEUE_IDLE_THRESHOLD_MINUTES", "120"))

# Auto schedule
SCHEDULE_TOLERANCE_SECONDS = int(os.getenv("SCHEDULE_TOLERANCE_SECONDS", "60"))
SCHEDULE_REFIRE_GUARD_MINUTES = int(os.getenv("SCHEDULE_REFIRE_GUARD_MINUTES", "60"))
SCHEDULE_TIMEZONE = os.getenv("SCHEDULE_TIMEZONE", "UTC")

# Background jobs
SCHEDULE_CHECK_INTERVAL_SECONDS = int(os.getenv("SCHEDULE_CHECK_INTERVAL_SECONDS", "60"))
QUEUE_SWEEP_INTERVAL_SECONDS = int(os.getenv("QUEUE_SWEEP_INTERVAL_SECONDS", "300"))

# WhatsApp notifications (Green API)
GREEN_API_URL = os.getenv("GREEN_API_URL", "https://api.green-api.com")
GREEN_API_ID_INSTANCE = os.getenv("GREEN_API_ID_INSTANCE", "")
GREEN_API_ACCESS_TOKEN = os.getenv("GREEN_API_ACCESS_TOKEN", "")
NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "10"))
APP_URL = os.getenv("APP_URL", "http://localhost:8000")

# CORS
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")
