import functools
import logging

import psycopg2
from psycopg2.extras import RealDictCursor
from contextlib import contextmanager
from config import get_db_config, PRIORITY_TIMER_DURATION_SECONDS
from constants import SYSTEM_STATE_ID
from errors import PersistenceError

logger = logging.getLogger(__name__)


@contextmanager
def get_db():
    """Get a database connection with automatic commit/rollback.

    Missing configuration and connection or transaction failures (including
    serialization failures and deadlocks) surface as PersistenceError.
    """
    try:
        config = get_db_config()
    except ValueError as e:
        logger.error(f"Database is not configured: {e}")
        raise PersistenceError() from e

    try:
        conn = psycopg2.connect(
            host=config["host"],
            port=config["port"],
            database=config["database"],
            user=config["user"],
            password=config["password"],
            cursor_factory=RealDictCursor
        )
    except psycopg2.OperationalError as e:
        logger.error(f"Database connection failed: {e}")
        raise PersistenceError() from e

    try:
        yield conn
        conn.commit()
    except psycopg2.OperationalError as e:
        conn.rollback()
        logger.warning(f"Transaction aborted: {e}")
        raise PersistenceError() from e
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def retry_once(func):
    """Retry an idempotent operation once after a PersistenceError."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PersistenceError:
            logger.warning(f"{func.__name__} hit a persistence error, retrying once")
            return func(*args, **kwargs)
    return wrapper


def init_db():
    """Initialize database schema."""
    with get_db() as conn:
        cursor = conn.cursor()

        # Singleton admission record
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS system_state (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                priority_mode_active BOOLEAN NOT NULL DEFAULT FALSE,
                open_for_all_active BOOLEAN NOT NULL DEFAULT FALSE,
                priority_timer_started_at TIMESTAMPTZ,
                priority_timer_duration_seconds INTEGER NOT NULL CHECK (priority_timer_duration_seconds > 0),
                updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                CHECK (NOT (priority_mode_active AND open_for_all_active))
            )
        """)

        # Duration is configuration; keep the row in sync on every boot
        cursor.execute("""
            INSERT INTO system_state (id, priority_timer_duration_seconds)
            VALUES (%s, %s)
            ON CONFLICT (id) DO UPDATE
            SET priority_timer_duration_seconds = EXCLUDED.priority_timer_duration_seconds
        """, (SYSTEM_STATE_ID, PRIORITY_TIMER_DURATION_SECONDS))

        # Owned by the auth/profile side; created here so a fresh database boots
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS profiles (
                user_id TEXT PRIMARY KEY,
                name TEXT,
                email TEXT,
                gender TEXT,
                phone TEXT,
                created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Owned by the booking side
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS bookings (
                id SERIAL PRIMARY KEY,
                user_id TEXT NOT NULL,
                created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS bookings_user_created_idx
            ON bookings (user_id, created_at)
        """)

        # Priority queue; position uniqueness is checked at commit so
        # renumbering can shift many rows in one statement
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS priority_queue (
                id SERIAL PRIMARY KEY,
                user_id TEXT NOT NULL UNIQUE,
                position INTEGER NOT NULL CHECK (position >= 1),
                gender_category TEXT,
                joined_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
                CONSTRAINT priority_queue_position_key UNIQUE (position) DEFERRABLE INITIALLY DEFERRED
            )
        """)

        # Weekly auto-start rules
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS auto_schedule (
                id SERIAL PRIMARY KEY,
                day_of_week INTEGER NOT NULL CHECK (day_of_week BETWEEN 0 AND 6),
                start_time TIME NOT NULL,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
            )
        """)

        conn.commit()


if __name__ == "__main__":
    init_db()
    print("Database initialized successfully")
