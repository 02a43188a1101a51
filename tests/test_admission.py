from datetime import timedelta

import pytest

from admission import can_book, ensure_can_book, time_remaining, window_expired
from conftest import T0, full_queue, make_entry, make_state
from errors import NotInQueueError, SystemPausedError, WindowExpiredError


def seconds(n):
    return T0 + timedelta(seconds=n)


def test_queued_user_books_until_window_closes():
    state = make_state("priority", started_at=T0, duration=600)
    queue = full_queue()

    assert can_book("user-3", state, queue, seconds(599)).allowed
    late = can_book("user-3", state, queue, seconds(601))
    assert not late.allowed
    assert late.reason == "window_expired"


def test_window_is_closed_at_exactly_duration():
    state = make_state("priority", started_at=T0, duration=600)
    assert not can_book("user-1", state, [make_entry(1)], seconds(600)).allowed


def test_user_outside_queue_is_denied_in_priority_mode():
    state = make_state("priority", started_at=T0)
    decision = can_book("stranger", state, full_queue(), seconds(10))
    assert not decision.allowed
    assert decision.reason == "not_in_queue"


def test_paused_system_denies_everyone():
    decision = can_book("user-1", make_state("paused"), [make_entry(1)], T0)
    assert not decision.allowed
    assert decision.reason == "system_paused"


def test_open_for_all_allows_users_outside_queue():
    decision = can_book("stranger", make_state("open_for_all"), [], T0)
    assert decision.allowed
    assert decision.reason == "open_for_all"


def test_priority_mode_without_timer_anchor_denies():
    state = make_state("priority", started_at=None)
    assert can_book("user-1", state, [make_entry(1)], T0).reason == "window_expired"


def test_allowed_decision_reports_remaining_time():
    state = make_state("priority", started_at=T0, duration=600)
    decision = can_book("user-1", state, [make_entry(1)], seconds(100))
    assert decision.time_remaining == 500


@pytest.mark.parametrize("mode", ["paused", "priority", "open_for_all"])
@pytest.mark.parametrize("in_queue", [True, False])
@pytest.mark.parametrize("elapsed", [0, 300, 600, 900])
def test_can_book_truth_table(mode, in_queue, elapsed):
    state = make_state(mode, started_at=T0 if mode == "priority" else None, duration=600)
    queue = [make_entry(1, user_id="me")] if in_queue else [make_entry(1)]
    now = seconds(elapsed)

    expected = mode == "open_for_all" or (
        mode == "priority" and in_queue and time_remaining(state, now) > 0
    )
    assert can_book("me", state, queue, now).allowed is expected


def test_time_remaining_is_non_increasing_and_clamped():
    state = make_state("priority", started_at=T0, duration=600)
    values = [time_remaining(state, seconds(s)) for s in range(-5, 700, 7)]

    assert all(a >= b for a, b in zip(values, values[1:]))
    assert min(values) == 0
    assert max(values) <= 600


def test_time_remaining_tolerates_start_in_the_future():
    state = make_state("priority", started_at=seconds(30), duration=600)
    assert time_remaining(state, T0) == 600


def test_time_remaining_floors_partial_seconds():
    state = make_state("priority", started_at=T0, duration=600)
    assert time_remaining(state, T0 + timedelta(seconds=599, milliseconds=900)) == 1


def test_time_remaining_without_anchor_is_zero():
    assert time_remaining(make_state("paused"), T0) == 0


def test_window_expired_only_in_priority_mode():
    assert window_expired(make_state("priority", started_at=T0, duration=60), seconds(61))
    assert not window_expired(make_state("priority", started_at=T0, duration=60), seconds(59))
    assert not window_expired(make_state("paused"), seconds(61))


@pytest.mark.parametrize("state, queue, error", [
    (make_state("priority", started_at=T0), [], NotInQueueError),
    (make_state("priority", started_at=T0, duration=60), [make_entry(1, user_id="me")], WindowExpiredError),
    (make_state("paused"), [make_entry(1, user_id="me")], SystemPausedError),
])
def test_ensure_can_book_raises_specific_denials(state, queue, error):
    with pytest.raises(error) as exc_info:
        ensure_can_book("me", state, queue, seconds(120))
    assert exc_info.value.status_code == 403


def test_ensure_can_book_returns_decision_when_allowed():
    decision = ensure_can_book("anyone", make_state("open_for_all"), [], T0)
    assert decision.allowed
