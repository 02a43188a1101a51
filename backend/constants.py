# backend/constants.py
"""Application constants - single source of truth for fixed values."""

# Priority queue: 12 players, balanced 6/6 between the two teams
DEFAULT_QUEUE_MAX_SIZE = 12
DEFAULT_CATEGORY_CAPACITY = "masculino:6,feminino:6"

# Any constant key works, it only has to match across processes
QUEUE_LOCK_KEY = 720_341

SYSTEM_STATE_ID = 1

# Day numbering follows the schedule table: 0 = Sunday
DAYS = ["sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]

MODE_PAUSED = "paused"
MODE_PRIORITY = "priority"
MODE_OPEN_FOR_ALL = "open_for_all"

# Admission reasons
REASON_OPEN_FOR_ALL = "open_for_all"
REASON_IN_PRIORITY_WINDOW = "in_priority_window"
REASON_NOT_IN_QUEUE = "not_in_queue"
REASON_WINDOW_EXPIRED = "window_expired"
REASON_SYSTEM_PAUSED = "system_paused"

EVENT_HISTORY_SIZE = 100
EVENT_POLL_TIMEOUT_MAX = 60

SYSTEM_OPEN_MESSAGE = (
    "🏐 *Booking is open for everyone!*\n\n"
    "The volleyball booking system is now open to all players.\n\n"
    "Book your spot now: {app_url}\n\n"
    "Spots are limited! 🏃⚡"
)

PRIORITY_OPEN_MESSAGE = (
    "🏐 *Your priority window is open!*\n\n"
    "You are #{position} in the priority queue. "
    "Book your spot before the window closes: {app_url}"
)
