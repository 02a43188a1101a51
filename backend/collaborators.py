"""Reads from tables owned by the profile and booking services."""

from datetime import datetime
from typing import Optional

from models import Booking, UserProfile


def get_user_profile(cursor, user_id: str) -> Optional[UserProfile]:
    cursor.execute(
        "SELECT user_id, name, gender, phone FROM profiles WHERE user_id = %s",
        (user_id,)
    )
    row = cursor.fetchone()
    return UserProfile(**dict(row)) if row else None


def list_bookings(cursor, user_ids: list[str], since: datetime) -> list[Booking]:
    """Bookings by any of `user_ids` created at or after `since`."""
    if not user_ids:
        return []
    cursor.execute("""
        SELECT user_id, created_at FROM bookings
        WHERE user_id = ANY(%s) AND created_at >= %s
        ORDER BY created_at
    """, (list(user_ids), since))
    return [Booking(**dict(row)) for row in cursor.fetchall()]


def list_notification_phones(cursor) -> list[str]:
    cursor.execute("""
        SELECT phone FROM profiles
        WHERE phone IS NOT NULL AND phone <> ''
        ORDER BY name
    """)
    return [row["phone"] for row in cursor.fetchall()]


def list_queued_phones(cursor) -> list[tuple[str, int]]:
    """(phone, position) for queued users that have a phone on file."""
    cursor.execute("""
        SELECT p.phone, q.position
        FROM priority_queue q
        JOIN profiles p ON p.user_id = q.user_id
        WHERE p.phone IS NOT NULL AND p.phone <> ''
        ORDER BY q.position
    """)
    return [(row["phone"], row["position"]) for row in cursor.fetchall()]
