"""Weekly auto-start of the priority window.

run_schedule_check() is meant to be called about once a minute by an outside
scheduler. It is safe to call more often: the state row is locked while the
guards are read, and a timer started within the refire guard blocks a second
start.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from collaborators import list_queued_phones
from config import SCHEDULE_REFIRE_GUARD_MINUTES, SCHEDULE_TIMEZONE, SCHEDULE_TOLERANCE_SECONDS
from database import get_db, retry_once
from errors import ScheduleRuleNotFoundError
from events import StateChanged, broker
from models import ScheduleCheckResult, ScheduleRule, ScheduleRuleCreate, ScheduleRuleUpdate, SystemState
from notifications import priority_open_messages
from system_state import load_state, save_state

logger = logging.getLogger(__name__)

NO_MATCHING_SCHEDULE = "no_matching_schedule"
SYSTEM_ALREADY_ACTIVE = "system_already_active"
TIMER_RECENTLY_STARTED = "timer_recently_started"
PRIORITY_TIMER_STARTED = "priority_timer_started"

_RULE_COLUMNS = "id, day_of_week, start_time, is_active, created_at"


@dataclass
class ScheduleDecision:
    fire: bool
    reason: str
    matching: list[ScheduleRule]


def day_of_week(moment: datetime) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (moment.weekday() + 1) % 7


def _seconds_of_day(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")[:2]
    return int(hours) * 3600 + int(minutes) * 60


def matching_rules(rules: Iterable[ScheduleRule], local_now: datetime, tolerance_seconds: int) -> list[ScheduleRule]:
    """Active rules for today whose start time is within the tolerance band."""
    today = day_of_week(local_now)
    current = _seconds_of_day(local_now.strftime("%H:%M"))
    return [
        rule for rule in rules
        if rule.is_active
        and rule.day_of_week == today
        and abs(_seconds_of_day(rule.start_time) - current) <= tolerance_seconds
    ]


def evaluate_schedule(
    rules: Iterable[ScheduleRule],
    state: SystemState,
    now: datetime,
    tz: ZoneInfo = ZoneInfo(SCHEDULE_TIMEZONE),
    tolerance_seconds: int = SCHEDULE_TOLERANCE_SECONDS,
    refire_guard: timedelta = timedelta(minutes=SCHEDULE_REFIRE_GUARD_MINUTES),
) -> ScheduleDecision:
    matching = matching_rules(rules, now.astimezone(tz), tolerance_seconds)
    if not matching:
        return ScheduleDecision(False, NO_MATCHING_SCHEDULE, matching)

    if state.priority_mode_active or state.open_for_all_active:
        return ScheduleDecision(False, SYSTEM_ALREADY_ACTIVE, matching)

    started_at = state.priority_timer_started_at
    if started_at is not None and now - started_at < refire_guard:
        return ScheduleDecision(False, TIMER_RECENTLY_STARTED, matching)

    return ScheduleDecision(True, PRIORITY_TIMER_STARTED, matching)


# ============ SQL ============

def list_active_rules(cursor, day: int) -> list[ScheduleRule]:
    cursor.execute(
        f"SELECT {_RULE_COLUMNS} FROM auto_schedule "
        "WHERE day_of_week = %s AND is_active ORDER BY start_time",
        (day,)
    )
    return [ScheduleRule(**dict(row)) for row in cursor.fetchall()]


@retry_once
def list_schedules() -> list[ScheduleRule]:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(f"SELECT {_RULE_COLUMNS} FROM auto_schedule ORDER BY day_of_week, start_time")
        return [ScheduleRule(**dict(row)) for row in cursor.fetchall()]


def create_schedule(rule: ScheduleRuleCreate) -> ScheduleRule:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(f"""
            INSERT INTO auto_schedule (day_of_week, start_time, is_active)
            VALUES (%s, %s, %s)
            RETURNING {_RULE_COLUMNS}
        """, (rule.day_of_week, rule.start_time, rule.is_active))
        created = ScheduleRule(**dict(cursor.fetchone()))

    logger.info(f"Schedule {created.id} created: day {created.day_of_week} at {created.start_time}")
    return created


def update_schedule(rule_id: int, update: ScheduleRuleUpdate) -> ScheduleRule:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(f"""
            UPDATE auto_schedule SET
                day_of_week = COALESCE(%s, day_of_week),
                start_time = COALESCE(%s::time, start_time),
                is_active = COALESCE(%s, is_active)
            WHERE id = %s
            RETURNING {_RULE_COLUMNS}
        """, (update.day_of_week, update.start_time, update.is_active, rule_id))
        row = cursor.fetchone()
        if not row:
            raise ScheduleRuleNotFoundError()
        return ScheduleRule(**dict(row))


def delete_schedule(rule_id: int):
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM auto_schedule WHERE id = %s", (rule_id,))
        if cursor.rowcount == 0:
            raise ScheduleRuleNotFoundError()
    logger.info(f"Schedule {rule_id} deleted")


# ============ TRIGGER ============

@retry_once
def run_schedule_check(now: Optional[datetime] = None) -> tuple[ScheduleCheckResult, list[tuple[str, str]]]:
    """Start the priority window if a schedule rule is due.

    Returns the result and the notifications to send after commit.
    """
    now = now or datetime.now(timezone.utc)
    tz = ZoneInfo(SCHEDULE_TIMEZONE)
    local_now = now.astimezone(tz)
    logger.debug(f"Checking schedules for day {day_of_week(local_now)} at {local_now:%H:%M}")

    messages = []
    with get_db() as conn:
        cursor = conn.cursor()
        state = load_state(cursor, for_update=True)
        rules = list_active_rules(cursor, day_of_week(local_now))
        decision = evaluate_schedule(rules, state, now, tz=tz)

        started_at = None
        if decision.fire:
            started_at = save_state(cursor, state.start_priority(now)).priority_timer_started_at
            messages = priority_open_messages(list_queued_phones(cursor))

    result = ScheduleCheckResult(
        fired=decision.fire,
        reason=decision.reason,
        matching_rule_ids=[rule.id for rule in decision.matching],
        started_at=started_at,
        checked_at=now,
    )
    if decision.fire:
        logger.info(f"Priority timer started automatically by schedules {result.matching_rule_ids}")
        broker.publish(StateChanged.SYSTEM_STATE_UPDATED)
    elif decision.matching:
        logger.info(f"Matching schedule skipped: {decision.reason}")
    return result, messages
