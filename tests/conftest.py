from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from models import QueueEntry, SystemState
from queue_store import QueueCapacity

# A Sunday
T0 = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def make_entry(position, user_id=None, category=None, joined_at=T0, entry_id=None):
    return QueueEntry(
        id=entry_id if entry_id is not None else position,
        user_id=user_id or f"user-{position}",
        position=position,
        gender_category=category,
        joined_at=joined_at,
    )


def make_state(mode="paused", started_at=None, duration=600):
    return SystemState(
        priority_mode_active=mode == "priority",
        open_for_all_active=mode == "open_for_all",
        priority_timer_started_at=started_at,
        priority_timer_duration_seconds=duration,
    )


def full_queue():
    """12 entries, six of each team, alternating."""
    return [
        make_entry(i, category="masculino" if i % 2 else "feminino")
        for i in range(1, 13)
    ]


@pytest.fixture
def capacity():
    return QueueCapacity(max_size=12, categories={"masculino": 6, "feminino": 6})


@pytest.fixture
def fake_db(monkeypatch):
    """Patch get_db in the given modules with a connection that records nothing."""
    conn = MagicMock()

    @contextmanager
    def _get_db():
        yield conn

    def install(*modules):
        for module in modules:
            monkeypatch.setattr(module, "get_db", _get_db)
        return conn

    return install


def minutes(n):
    return timedelta(minutes=n)
