"""In-process StateChanged feed for long-polling clients.

Mutations publish after their transaction commits, from whatever thread ran
them. Clients remember the last version they saw and await wait_for() until
something newer arrives. Waiting happens on the event loop, so pending polls
hold no worker threads.
"""

import asyncio
import logging
import threading
from collections import deque
from enum import Enum

from constants import EVENT_HISTORY_SIZE

logger = logging.getLogger(__name__)


class StateChanged(str, Enum):
    SYSTEM_STATE_UPDATED = "system_state_updated"
    QUEUE_UPDATED = "queue_updated"


class EventBroker:
    def __init__(self, history_size: int = EVENT_HISTORY_SIZE):
        self._lock = threading.Lock()
        self._version = 0
        self._history: deque[tuple[int, StateChanged]] = deque(maxlen=history_size)
        self._waiters: set[tuple[asyncio.AbstractEventLoop, asyncio.Event]] = set()

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def publish(self, *events: StateChanged) -> int:
        with self._lock:
            for event in events:
                self._version += 1
                self._history.append((self._version, event))
            version = self._version
            waiters = list(self._waiters)

        for loop, woken in waiters:
            loop.call_soon_threadsafe(woken.set)
        logger.debug(f"Published {[e.value for e in events]} (version {version})")
        return version

    def _needs_resync(self, since: int) -> bool:
        # Client is ahead of us (process restarted) or behind the kept history
        if since > self._version:
            return True
        oldest = self._history[0][0] if self._history else self._version + 1
        return since < oldest - 1

    def _events_since(self, since: int) -> list[StateChanged]:
        seen = []
        for version, event in self._history:
            if version > since and event not in seen:
                seen.append(event)
        return seen

    async def wait_for(self, since: int, timeout: float) -> tuple[int, list[StateChanged]]:
        """Wait until there are events newer than `since` or timeout expires.

        Returns the current version and the distinct event types published
        after `since`, in first-seen order. A client that cannot be served
        from history gets every event type so it refetches everything.
        """
        waiter = (asyncio.get_running_loop(), asyncio.Event())
        with self._lock:
            if self._needs_resync(since):
                return self._version, list(StateChanged)
            if self._version > since:
                return self._version, self._events_since(since)
            self._waiters.add(waiter)

        try:
            await asyncio.wait_for(waiter[1].wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        finally:
            with self._lock:
                self._waiters.discard(waiter)

        with self._lock:
            return self._version, self._events_since(since)


broker = EventBroker()
