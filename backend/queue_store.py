"""Priority queue storage.

Every mutation runs in a single transaction holding the queue advisory lock,
so a capacity read, the insert that depends on it and any renumbering can
never interleave with another join, removal or sweep.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from collaborators import get_user_profile
from config import QUEUE_CATEGORY_CAPACITY, QUEUE_MAX_SIZE
from constants import QUEUE_LOCK_KEY
from database import get_db, retry_once
from errors import (
    AlreadyInQueueError,
    CapacityError,
    EntryNotFoundError,
    ProfileIncompleteError,
    ProfileNotFoundError,
    QueueClosedError,
)
from events import StateChanged, broker
from models import CategoryCount, QueueEntry, QueueResponse
from system_state import load_state

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueCapacity:
    max_size: int = QUEUE_MAX_SIZE
    categories: dict[str, int] = field(default_factory=lambda: dict(QUEUE_CATEGORY_CAPACITY))


def category_counts(entries: Iterable[QueueEntry]) -> Counter:
    return Counter(e.gender_category for e in entries if e.gender_category)


def check_capacity(entries: list[QueueEntry], category: Optional[str], capacity: QueueCapacity):
    """Raise CapacityError if one more entry in `category` would overflow."""
    if len(entries) >= capacity.max_size:
        raise CapacityError(f"The priority queue is full ({len(entries)}/{capacity.max_size})")

    limit = capacity.categories.get(category) if category else None
    if limit is not None:
        count = category_counts(entries)[category]
        if count >= limit:
            raise CapacityError(f"The {category} queue is full ({count}/{limit})")


def plan_join(
    entries: list[QueueEntry],
    user_id: str,
    category: Optional[str],
    capacity: QueueCapacity,
) -> int:
    """Validate a join against the current entries and return its position."""
    if any(e.user_id == user_id for e in entries):
        raise AlreadyInQueueError()
    check_capacity(entries, category, capacity)
    return len(entries) + 1


def renumber(entries: Iterable[QueueEntry]) -> list[QueueEntry]:
    """Sort by current position and reassign positions 1..N."""
    ordered = sorted(entries, key=lambda e: (e.position, e.id))
    return [e.model_copy(update={"position": i}) for i, e in enumerate(ordered, start=1)]


def summarize(entries: list[QueueEntry], capacity: QueueCapacity) -> QueueResponse:
    counts = category_counts(entries)
    categories = {
        name: CategoryCount(count=counts[name], capacity=limit)
        for name, limit in capacity.categories.items()
    }
    return QueueResponse(
        entries=entries,
        total=len(entries),
        max_size=capacity.max_size,
        categories=categories,
    )


# ============ SQL ============

def lock_queue(cursor):
    cursor.execute("SELECT pg_advisory_xact_lock(%s)", (QUEUE_LOCK_KEY,))


def list_entries(cursor) -> list[QueueEntry]:
    cursor.execute("""
        SELECT q.id, q.user_id, q.position, q.gender_category, q.joined_at, p.name
        FROM priority_queue q
        LEFT JOIN profiles p ON p.user_id = q.user_id
        ORDER BY q.position
    """)
    return [QueueEntry(**dict(row)) for row in cursor.fetchall()]


def insert_entry(cursor, user_id: str, position: int, category: Optional[str], joined_at: datetime) -> QueueEntry:
    cursor.execute("""
        INSERT INTO priority_queue (user_id, position, gender_category, joined_at)
        VALUES (%s, %s, %s, %s)
        RETURNING id, user_id, position, gender_category, joined_at
    """, (user_id, position, category, joined_at))
    return QueueEntry(**dict(cursor.fetchone()))


def delete_entries(cursor, entry_ids: list[int]) -> int:
    if not entry_ids:
        return 0
    cursor.execute("DELETE FROM priority_queue WHERE id = ANY(%s)", (list(entry_ids),))
    return cursor.rowcount


def compact_positions(cursor) -> int:
    """Close gaps left by removals; returns the number of rows moved."""
    cursor.execute("""
        UPDATE priority_queue q
        SET position = r.new_position
        FROM (
            SELECT id, ROW_NUMBER() OVER (ORDER BY position, id) AS new_position
            FROM priority_queue
        ) r
        WHERE q.id = r.id AND q.position <> r.new_position
    """)
    return cursor.rowcount


# ============ OPERATIONS ============

def _insert_checked(cursor, user_id: str, category: Optional[str], now: datetime, capacity: QueueCapacity) -> QueueEntry:
    entries = list_entries(cursor)
    position = plan_join(entries, user_id, category, capacity)
    return insert_entry(cursor, user_id, position, category, now)


@retry_once
def list_ordered() -> list[QueueEntry]:
    with get_db() as conn:
        return list_entries(conn.cursor())


def join(user_id: str, now: Optional[datetime] = None, capacity: Optional[QueueCapacity] = None) -> QueueEntry:
    """Self-service join; only open while priority mode is active."""
    now = now or datetime.now(timezone.utc)
    capacity = capacity or QueueCapacity()

    with get_db() as conn:
        cursor = conn.cursor()
        profile = get_user_profile(cursor, user_id)
        if profile is None:
            raise ProfileNotFoundError()
        if profile.gender is None:
            raise ProfileIncompleteError()
        if profile.gender not in capacity.categories:
            raise ProfileIncompleteError(f"Unknown team '{profile.gender}', contact an administrator")

        if not load_state(cursor).priority_mode_active:
            raise QueueClosedError()

        lock_queue(cursor)
        entry = _insert_checked(cursor, user_id, profile.gender, now, capacity)

    logger.info(f"{user_id} joined the queue at position {entry.position}")
    broker.publish(StateChanged.QUEUE_UPDATED)
    return entry


def add_to_queue(user_id: str, now: Optional[datetime] = None, capacity: Optional[QueueCapacity] = None) -> QueueEntry:
    """Admin insert: any mode, profile category optional."""
    now = now or datetime.now(timezone.utc)
    capacity = capacity or QueueCapacity()

    with get_db() as conn:
        cursor = conn.cursor()
        profile = get_user_profile(cursor, user_id)
        if profile is None:
            raise ProfileNotFoundError()

        lock_queue(cursor)
        entry = _insert_checked(cursor, user_id, profile.gender, now, capacity)

    logger.info(f"Admin added {user_id} to the queue at position {entry.position}")
    broker.publish(StateChanged.QUEUE_UPDATED)
    return entry


def _remove_where(column: str, value) -> QueueEntry:
    with get_db() as conn:
        cursor = conn.cursor()
        lock_queue(cursor)
        cursor.execute(
            f"DELETE FROM priority_queue WHERE {column} = %s "
            "RETURNING id, user_id, position, gender_category, joined_at",
            (value,)
        )
        row = cursor.fetchone()
        if not row:
            raise EntryNotFoundError()
        compact_positions(cursor)

    broker.publish(StateChanged.QUEUE_UPDATED)
    return QueueEntry(**dict(row))


def leave(user_id: str) -> QueueEntry:
    entry = _remove_where("user_id", user_id)
    logger.info(f"{user_id} left the queue from position {entry.position}")
    return entry


def remove_from_queue(entry_id: int) -> QueueEntry:
    entry = _remove_where("id", entry_id)
    logger.info(f"Admin removed {entry.user_id} from position {entry.position}")
    return entry


@retry_once
def clear_queue() -> int:
    with get_db() as conn:
        cursor = conn.cursor()
        lock_queue(cursor)
        cursor.execute("DELETE FROM priority_queue")
        cleared = cursor.rowcount

    logger.info(f"Queue cleared ({cleared} entries)")
    broker.publish(StateChanged.QUEUE_UPDATED)
    return cleared
