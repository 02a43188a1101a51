"""Idle-entry eviction for the priority queue.

A queued user who has not booked within the idle threshold loses their slot.
Anyone with a booking created at or after their join time keeps it. Runs
under the queue lock, so joins never observe a half-swept queue.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from collaborators import list_bookings
from config import QUEUE_IDLE_THRESHOLD_MINUTES
from database import get_db, retry_once
from events import StateChanged, broker
from models import Booking, QueueEntry, RemovedEntry, SweepResult
from queue_store import compact_positions, delete_entries, list_entries, lock_queue, renumber

logger = logging.getLogger(__name__)


@dataclass
class SweepPlan:
    evicted: list[QueueEntry]
    exempt: list[QueueEntry]
    remaining: list[QueueEntry]


def has_booked_since(entry: QueueEntry, bookings: Iterable[Booking]) -> bool:
    return any(b.user_id == entry.user_id and b.created_at >= entry.joined_at for b in bookings)


def plan_sweep(
    entries: list[QueueEntry],
    bookings: list[Booking],
    now: datetime,
    idle_threshold: timedelta,
) -> SweepPlan:
    cutoff = now - idle_threshold
    evicted, exempt = [], []
    for entry in entries:
        if entry.joined_at >= cutoff:
            continue
        if has_booked_since(entry, bookings):
            exempt.append(entry)
        else:
            evicted.append(entry)

    evicted_ids = {e.id for e in evicted}
    remaining = renumber(e for e in entries if e.id not in evicted_ids)
    return SweepPlan(evicted=evicted, exempt=exempt, remaining=remaining)


def _removed(entry: QueueEntry, now: datetime) -> RemovedEntry:
    hours = (now - entry.joined_at).total_seconds() / 3600
    return RemovedEntry(
        user_id=entry.user_id,
        position=entry.position,
        joined_at=entry.joined_at,
        hours_in_queue=round(hours, 1),
    )


@retry_once
def run_queue_sweep(now: Optional[datetime] = None, idle_threshold: Optional[timedelta] = None) -> SweepResult:
    now = now or datetime.now(timezone.utc)
    idle_threshold = idle_threshold or timedelta(minutes=QUEUE_IDLE_THRESHOLD_MINUTES)
    cutoff = now - idle_threshold
    logger.debug(f"Sweeping queue entries idle since before {cutoff.isoformat()}")

    with get_db() as conn:
        cursor = conn.cursor()
        lock_queue(cursor)
        entries = list_entries(cursor)

        expired = [e for e in entries if e.joined_at < cutoff]
        bookings = []
        if expired:
            bookings = list_bookings(
                cursor,
                [e.user_id for e in expired],
                since=min(e.joined_at for e in expired),
            )

        plan = plan_sweep(entries, bookings, now, idle_threshold)
        if plan.evicted:
            delete_entries(cursor, [e.id for e in plan.evicted])
            compact_positions(cursor)

    if plan.evicted:
        logger.info(
            f"Removed {len(plan.evicted)} idle entries "
            f"({len(plan.exempt)} exempt, {len(plan.remaining)} remaining)"
        )
        broker.publish(StateChanged.QUEUE_UPDATED)
    elif plan.exempt:
        logger.info(f"All {len(plan.exempt)} idle entries have booked, nothing to remove")

    return SweepResult(
        removed=[_removed(e, now) for e in plan.evicted],
        exempt_count=len(plan.exempt),
        remaining=len(plan.remaining),
        cleaned_at=now,
    )
