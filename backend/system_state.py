"""Persistence and admin transitions for the singleton system state."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from collaborators import list_notification_phones, list_queued_phones
from constants import SYSTEM_STATE_ID
from database import get_db, retry_once
from events import StateChanged, broker
from models import SystemState
from notifications import priority_open_messages, system_open_messages

logger = logging.getLogger(__name__)

_STATE_COLUMNS = (
    "priority_mode_active, open_for_all_active, priority_timer_started_at, "
    "priority_timer_duration_seconds, updated_at"
)


@dataclass
class Transition:
    previous: SystemState
    state: SystemState
    # (phone, message) pairs to send once the transaction has committed
    notifications: list[tuple[str, str]] = field(default_factory=list)


def load_state(cursor, for_update: bool = False) -> SystemState:
    """Read the singleton row; FOR UPDATE holds it until the transaction ends."""
    lock = " FOR UPDATE" if for_update else ""
    cursor.execute(
        f"SELECT {_STATE_COLUMNS} FROM system_state WHERE id = %s{lock}",
        (SYSTEM_STATE_ID,)
    )
    row = cursor.fetchone()
    if not row:
        raise RuntimeError("system_state row missing, run init_db() first")
    return SystemState(**dict(row))


def save_state(cursor, state: SystemState) -> SystemState:
    cursor.execute(f"""
        UPDATE system_state
        SET priority_mode_active = %s,
            open_for_all_active = %s,
            priority_timer_started_at = %s,
            updated_at = CURRENT_TIMESTAMP
        WHERE id = %s
        RETURNING {_STATE_COLUMNS}
    """, (
        state.priority_mode_active,
        state.open_for_all_active,
        state.priority_timer_started_at,
        SYSTEM_STATE_ID,
    ))
    return SystemState(**dict(cursor.fetchone()))


@retry_once
def get_system_state() -> SystemState:
    with get_db() as conn:
        return load_state(conn.cursor())


@retry_once
def start_priority_window(now: Optional[datetime] = None) -> Transition:
    """Enter priority mode and (re)start the timer from now."""
    now = now or datetime.now(timezone.utc)
    with get_db() as conn:
        cursor = conn.cursor()
        previous = load_state(cursor, for_update=True)
        state = save_state(cursor, previous.start_priority(now))
        messages = priority_open_messages(list_queued_phones(cursor))

    logger.info(f"Priority window started at {now.isoformat()} ({state.priority_timer_duration_seconds}s)")
    broker.publish(StateChanged.SYSTEM_STATE_UPDATED)
    return Transition(previous, state, messages)


@retry_once
def open_for_all() -> Transition:
    with get_db() as conn:
        cursor = conn.cursor()
        previous = load_state(cursor, for_update=True)
        if previous.open_for_all_active:
            logger.info("System already open for all")
            return Transition(previous, previous)
        state = save_state(cursor, previous.open_for_all())
        messages = system_open_messages(list_notification_phones(cursor))

    logger.info(f"System opened for all (was {previous.mode})")
    broker.publish(StateChanged.SYSTEM_STATE_UPDATED)
    return Transition(previous, state, messages)


@retry_once
def pause_system() -> Transition:
    with get_db() as conn:
        cursor = conn.cursor()
        previous = load_state(cursor, for_update=True)
        state = save_state(cursor, previous.pause())

    if previous.mode != state.mode:
        logger.info(f"System paused (was {previous.mode})")
    broker.publish(StateChanged.SYSTEM_STATE_UPDATED)
    return Transition(previous, state)
