#!/usr/bin/env python3
"""
Import seed data into local database for testing.

Usage:
    python scripts/import_seed_data.py [path/to/seed_data.json]

Reads from data/seed_data.json by default and imports profiles, bookings,
auto-schedule rules and queue entries. Queue entries are inserted in file
order through the admin queue path. Requires DATABASE_URL to be set in .env file.
"""

import json
import sys
from datetime import datetime
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from database import get_db, init_db
from errors import CourtQueueError
from queue_store import add_to_queue

def import_data(seed_file: Path):
    """Import seed data from JSON file."""
    if not seed_file.exists():
        print(f"Error: {seed_file} not found")
        sys.exit(1)

    with open(seed_file) as f:
        data = json.load(f)

    print(f"Loading seed data from {seed_file}")
    print(f"  Profiles: {len(data.get('profiles', []))}")
    print(f"  Bookings: {len(data.get('bookings', []))}")
    print(f"  Schedules: {len(data.get('auto_schedule', []))}")
    print(f"  Queue: {len(data.get('priority_queue', []))}")

    # Initialize database schema
    print("\nInitializing database schema...")
    init_db()

    with get_db() as conn:
        cursor = conn.cursor()

        for profile in data.get("profiles", []):
            cursor.execute("""
                INSERT INTO profiles (user_id, name, email, gender, phone)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (user_id) DO UPDATE SET
                    name = EXCLUDED.name,
                    gender = EXCLUDED.gender,
                    phone = EXCLUDED.phone
            """, (
                profile["user_id"],
                profile.get("name"),
                profile.get("email"),
                profile.get("gender"),
                profile.get("phone"),
            ))
        print(f"Imported {len(data.get('profiles', []))} profiles")

        for booking in data.get("bookings", []):
            cursor.execute(
                "INSERT INTO bookings (user_id, created_at) VALUES (%s, COALESCE(%s, CURRENT_TIMESTAMP))",
                (booking["user_id"], booking.get("created_at"))
            )
        print(f"Imported {len(data.get('bookings', []))} bookings")

        for rule in data.get("auto_schedule", []):
            cursor.execute("""
                INSERT INTO auto_schedule (day_of_week, start_time, is_active)
                VALUES (%s, %s, %s)
            """, (rule["day_of_week"], rule["start_time"], rule.get("is_active", True)))
        print(f"Imported {len(data.get('auto_schedule', []))} schedules")

    # Queue entries go through the admin path so capacity limits still apply
    added = 0
    for entry in data.get("priority_queue", []):
        joined_at = entry.get("joined_at")
        try:
            add_to_queue(
                entry["user_id"],
                now=datetime.fromisoformat(joined_at) if joined_at else None,
            )
            added += 1
        except CourtQueueError as e:
            print(f"  Skipped {entry['user_id']}: {e.message}")
    print(f"Imported {added} queue entries")

    print("\nSeed data imported successfully!")


if __name__ == "__main__":
    default = Path(__file__).parent.parent / "data" / "seed_data.json"
    import_data(Path(sys.argv[1]) if len(sys.argv) > 1 else default)
