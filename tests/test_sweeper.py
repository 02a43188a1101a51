from datetime import timedelta

import pytest

import sweeper
from conftest import T0, make_entry, minutes
from models import Booking
from sweeper import has_booked_since, plan_sweep

TWO_HOURS = timedelta(hours=2)


def test_idle_entry_is_evicted_and_rest_renumbered():
    entries = [
        make_entry(1, "idle", joined_at=T0),
        make_entry(2, "fresh-a", joined_at=T0 + minutes(90)),
        make_entry(3, "fresh-b", joined_at=T0 + minutes(100)),
    ]
    plan = plan_sweep(entries, [], T0 + minutes(121), TWO_HOURS)

    assert [e.user_id for e in plan.evicted] == ["idle"]
    assert [(e.user_id, e.position) for e in plan.remaining] == [("fresh-a", 1), ("fresh-b", 2)]


def test_entry_exactly_at_cutoff_is_kept():
    entries = [make_entry(1, joined_at=T0)]
    plan = plan_sweep(entries, [], T0 + TWO_HOURS, TWO_HOURS)
    assert plan.evicted == []


def test_user_who_booked_after_joining_is_exempt():
    entries = [make_entry(1, "booked", joined_at=T0), make_entry(2, "idle", joined_at=T0)]
    bookings = [Booking(user_id="booked", created_at=T0 + minutes(5))]

    plan = plan_sweep(entries, bookings, T0 + minutes(121), TWO_HOURS)

    assert [e.user_id for e in plan.evicted] == ["idle"]
    assert [e.user_id for e in plan.exempt] == ["booked"]
    assert [(e.user_id, e.position) for e in plan.remaining] == [("booked", 1)]


def test_booking_at_join_time_counts():
    entry = make_entry(1, "u", joined_at=T0)
    assert has_booked_since(entry, [Booking(user_id="u", created_at=T0)])


def test_booking_before_joining_does_not_exempt():
    entry = make_entry(1, "u", joined_at=T0)
    assert not has_booked_since(entry, [Booking(user_id="u", created_at=T0 - minutes(1))])
    assert not has_booked_since(entry, [Booking(user_id="other", created_at=T0 + minutes(1))])


def test_middle_evictions_leave_dense_positions():
    entries = [
        make_entry(i, f"u{i}", joined_at=T0 if i in (2, 4, 5) else T0 + minutes(119))
        for i in range(1, 8)
    ]
    plan = plan_sweep(entries, [], T0 + minutes(150), TWO_HOURS)

    assert sorted(e.user_id for e in plan.evicted) == ["u2", "u4", "u5"]
    assert [e.position for e in plan.remaining] == [1, 2, 3, 4]
    assert [e.user_id for e in plan.remaining] == ["u1", "u3", "u6", "u7"]


# --- run_queue_sweep with the database patched out ---

@pytest.fixture
def sweep_db(fake_db, monkeypatch):
    fake_db(sweeper)
    calls = {"deleted": [], "compacted": 0, "booking_queries": []}
    store = {"entries": [], "bookings": []}

    def list_bookings(cursor, user_ids, since):
        calls["booking_queries"].append((sorted(user_ids), since))
        return [b for b in store["bookings"] if b.user_id in user_ids and b.created_at >= since]

    def compact(cursor):
        calls["compacted"] += 1

    monkeypatch.setattr(sweeper, "lock_queue", lambda cursor: None)
    monkeypatch.setattr(sweeper, "list_entries", lambda cursor: list(store["entries"]))
    monkeypatch.setattr(sweeper, "list_bookings", list_bookings)
    monkeypatch.setattr(sweeper, "delete_entries", lambda cursor, ids: calls["deleted"].extend(ids))
    monkeypatch.setattr(sweeper, "compact_positions", compact)
    return store, calls


def test_sweep_removes_idle_users_in_one_batch(sweep_db):
    store, calls = sweep_db
    store["entries"] = [
        make_entry(1, "idle-a", joined_at=T0, entry_id=11),
        make_entry(2, "booked", joined_at=T0, entry_id=12),
        make_entry(3, "idle-b", joined_at=T0 + minutes(1), entry_id=13),
        make_entry(4, "fresh", joined_at=T0 + minutes(100), entry_id=14),
    ]
    store["bookings"] = [Booking(user_id="booked", created_at=T0 + minutes(30))]

    result = sweeper.run_queue_sweep(now=T0 + minutes(121), idle_threshold=TWO_HOURS)

    assert calls["deleted"] == [11, 13]
    assert calls["compacted"] == 1
    assert [r.user_id for r in result.removed] == ["idle-a", "idle-b"]
    assert result.removed[0].hours_in_queue == 2.0
    assert result.exempt_count == 1
    assert result.remaining == 2
    assert calls["booking_queries"] == [(["booked", "idle-a", "idle-b"], T0)]


def test_sweep_with_nothing_expired_skips_writes(sweep_db):
    store, calls = sweep_db
    store["entries"] = [make_entry(1, joined_at=T0)]

    result = sweeper.run_queue_sweep(now=T0 + minutes(30), idle_threshold=TWO_HOURS)

    assert result.removed == []
    assert calls["deleted"] == []
    assert calls["compacted"] == 0
    assert calls["booking_queries"] == []


def test_sweep_is_idempotent(sweep_db):
    store, calls = sweep_db
    store["entries"] = [make_entry(1, "idle", joined_at=T0, entry_id=5)]

    first = sweeper.run_queue_sweep(now=T0 + minutes(121), idle_threshold=TWO_HOURS)
    store["entries"] = []
    second = sweeper.run_queue_sweep(now=T0 + minutes(122), idle_threshold=TWO_HOURS)

    assert len(first.removed) == 1
    assert second.removed == [] and second.remaining == 0
