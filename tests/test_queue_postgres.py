"""Queue and sweep SQL against a real PostgreSQL database.

Set TEST_DATABASE_URL to a throwaway database to run these; every test
truncates the queue, profile, booking and schedule tables.
"""

import os
import threading
from datetime import datetime, timedelta, timezone

import pytest

import config
import queue_store
import sweeper
from database import get_db, init_db
from errors import CapacityError

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "")

pytestmark = pytest.mark.skipif(not TEST_DATABASE_URL, reason="TEST_DATABASE_URL not set")


@pytest.fixture
def pg(monkeypatch):
    monkeypatch.setattr(config, "DATABASE_URL", TEST_DATABASE_URL)
    init_db()
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("TRUNCATE priority_queue, profiles, bookings, auto_schedule RESTART IDENTITY")
        cursor.execute("""
            UPDATE system_state
            SET priority_mode_active = TRUE, open_for_all_active = FALSE,
                priority_timer_started_at = CURRENT_TIMESTAMP
            WHERE id = 1
        """)


def add_profiles(*users):
    """users: (user_id, gender) pairs."""
    with get_db() as conn:
        cursor = conn.cursor()
        for user_id, gender in users:
            cursor.execute(
                "INSERT INTO profiles (user_id, name, gender) VALUES (%s, %s, %s)",
                (user_id, user_id.title(), gender)
            )


def add_booking(user_id, created_at):
    with get_db() as conn:
        conn.cursor().execute(
            "INSERT INTO bookings (user_id, created_at) VALUES (%s, %s)", (user_id, created_at)
        )


def queue_rows():
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT id, user_id, position, gender_category FROM priority_queue ORDER BY position")
        return cursor.fetchall()


def positions():
    return [(row["user_id"], row["position"]) for row in queue_rows()]


def join_concurrently(user_ids):
    """Start every join at the same moment; returns {user_id: entry or error}."""
    barrier = threading.Barrier(len(user_ids))
    outcomes = {}

    def run(user_id):
        barrier.wait()
        try:
            outcomes[user_id] = queue_store.join(user_id)
        except CapacityError as e:
            outcomes[user_id] = e

    threads = [threading.Thread(target=run, args=(user_id,)) for user_id in user_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


def test_positions_stay_dense_after_leave_and_rejoin(pg):
    add_profiles(("ana", "feminino"), ("bruno", "masculino"), ("carla", "feminino"),
                 ("davi", "masculino"), ("eva", "feminino"))
    for user_id in ["ana", "bruno", "carla", "davi"]:
        queue_store.join(user_id)

    queue_store.leave("bruno")
    assert positions() == [("ana", 1), ("carla", 2), ("davi", 3)]

    assert queue_store.join("eva").position == 4
    assert positions() == [("ana", 1), ("carla", 2), ("davi", 3), ("eva", 4)]


def test_admin_removal_from_the_middle_renumbers(pg):
    add_profiles(("ana", "feminino"), ("bruno", "masculino"), ("carla", "feminino"))
    entries = [queue_store.add_to_queue(user_id) for user_id in ["ana", "bruno", "carla"]]

    removed = queue_store.remove_from_queue(entries[0].id)

    assert removed.user_id == "ana"
    assert positions() == [("bruno", 1), ("carla", 2)]


def test_concurrent_joins_for_the_last_slot_admit_exactly_one(pg):
    men = [(f"m{i}", "masculino") for i in range(6)]
    women = [(f"f{i}", "feminino") for i in range(5)]
    add_profiles(*men, *women, ("late-a", "feminino"), ("late-b", "feminino"))
    for user_id, _ in men + women:
        queue_store.add_to_queue(user_id)

    outcomes = join_concurrently(["late-a", "late-b"])

    errors = [o for o in outcomes.values() if isinstance(o, CapacityError)]
    assert len(outcomes) == 2 and len(errors) == 1

    rows = queue_rows()
    assert len(rows) == 12
    assert sum(row["gender_category"] == "feminino" for row in rows) == 6
    assert [row["position"] for row in rows] == list(range(1, 13))


def test_concurrent_joins_never_overflow_a_category(pg):
    women = [(f"f{i}", "feminino") for i in range(5)]
    add_profiles(*women, ("late-a", "feminino"), ("late-b", "feminino"), ("late-c", "feminino"))
    for user_id, _ in women:
        queue_store.add_to_queue(user_id)

    outcomes = join_concurrently(["late-a", "late-b", "late-c"])

    admitted = [o for o in outcomes.values() if not isinstance(o, CapacityError)]
    assert len(admitted) == 1
    assert admitted[0].position == 6
    assert len(queue_rows()) == 6


def test_sweep_evicts_from_the_middle_and_renumbers(pg):
    now = datetime.now(timezone.utc)
    add_profiles(("ana", "feminino"), ("bruno", "masculino"), ("carla", "feminino"), ("davi", "masculino"))
    queue_store.add_to_queue("ana", now=now - timedelta(minutes=10))
    queue_store.add_to_queue("bruno", now=now - timedelta(hours=3))
    queue_store.add_to_queue("carla", now=now - timedelta(hours=3))
    queue_store.add_to_queue("davi", now=now - timedelta(minutes=5))
    add_booking("carla", now - timedelta(hours=1))

    result = sweeper.run_queue_sweep(now=now, idle_threshold=timedelta(hours=2))

    assert [r.user_id for r in result.removed] == ["bruno"]
    assert result.exempt_count == 1
    assert result.remaining == 3
    assert positions() == [("ana", 1), ("carla", 2), ("davi", 3)]
