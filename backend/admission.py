"""Booking admission decisions.

Everything here is derived on read from the system state and the queue;
nothing counts down in the background. The stored timer anchor is the only
source of truth for the remaining window.
"""

import math
from datetime import datetime, timezone
from typing import Iterable, Optional

from constants import (
    REASON_IN_PRIORITY_WINDOW,
    REASON_NOT_IN_QUEUE,
    REASON_OPEN_FOR_ALL,
    REASON_SYSTEM_PAUSED,
    REASON_WINDOW_EXPIRED,
)
from errors import DENIAL_ERRORS
from models import AdmissionDecision, QueueEntry, SystemState


def time_remaining(state: SystemState, now: Optional[datetime] = None) -> int:
    """Seconds left in the priority window, clamped to [0, duration]."""
    started_at = state.priority_timer_started_at
    if started_at is None:
        return 0
    now = now or datetime.now(timezone.utc)

    # A start stamped slightly in our future (clock drift) counts as zero elapsed
    elapsed = max(0, math.floor((now - started_at).total_seconds()))
    return max(0, state.priority_timer_duration_seconds - elapsed)


def window_expired(state: SystemState, now: Optional[datetime] = None) -> bool:
    return state.priority_mode_active and time_remaining(state, now) == 0


def can_book(
    user_id: str,
    state: SystemState,
    queue: Iterable[QueueEntry],
    now: Optional[datetime] = None,
) -> AdmissionDecision:
    if state.open_for_all_active:
        return AdmissionDecision(allowed=True, reason=REASON_OPEN_FOR_ALL)

    if state.priority_mode_active:
        if not any(entry.user_id == user_id for entry in queue):
            return AdmissionDecision(allowed=False, reason=REASON_NOT_IN_QUEUE)

        remaining = time_remaining(state, now)
        if remaining > 0:
            return AdmissionDecision(
                allowed=True, reason=REASON_IN_PRIORITY_WINDOW, time_remaining=remaining
            )
        return AdmissionDecision(allowed=False, reason=REASON_WINDOW_EXPIRED)

    return AdmissionDecision(allowed=False, reason=REASON_SYSTEM_PAUSED)


def ensure_can_book(
    user_id: str,
    state: SystemState,
    queue: Iterable[QueueEntry],
    now: Optional[datetime] = None,
) -> AdmissionDecision:
    """Like can_book, but raises the matching BookingDeniedError on denial."""
    decision = can_book(user_id, state, queue, now)
    if not decision.allowed:
        raise DENIAL_ERRORS[decision.reason]()
    return decision
