#!/usr/bin/env python3
"""
Run the schedule check and the queue sweep on a fixed cadence.

Usage:
    python scripts/run_jobs.py           # loop forever
    python scripts/run_jobs.py --once    # run both jobs once and exit

Intervals come from SCHEDULE_CHECK_INTERVAL_SECONDS and
QUEUE_SWEEP_INTERVAL_SECONDS. A failing job is logged and retried on its
next tick; it never stops the loop.
"""

import argparse
import logging
import sys
import time
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from config import QUEUE_SWEEP_INTERVAL_SECONDS, SCHEDULE_CHECK_INTERVAL_SECONDS
from logging_config import setup_logging
import auto_schedule
import notifications
import sweeper

logger = logging.getLogger("run_jobs")


def run_schedule_job():
    try:
        result, messages = auto_schedule.run_schedule_check()
    except Exception:
        logger.exception("Schedule check failed")
        return
    if messages:
        notifications.deliver(messages)
    logger.debug(f"Schedule check: {result.reason}")


def run_sweep_job():
    try:
        result = sweeper.run_queue_sweep()
    except Exception:
        logger.exception("Queue sweep failed")
        return
    logger.debug(f"Queue sweep: removed {len(result.removed)}, {result.remaining} remaining")


def run_forever():
    jobs = [
        (run_schedule_job, SCHEDULE_CHECK_INTERVAL_SECONDS),
        (run_sweep_job, QUEUE_SWEEP_INTERVAL_SECONDS),
    ]
    next_due = [time.monotonic()] * len(jobs)
    logger.info(
        f"Job runner started (schedule check every {SCHEDULE_CHECK_INTERVAL_SECONDS}s, "
        f"sweep every {QUEUE_SWEEP_INTERVAL_SECONDS}s)"
    )

    while True:
        now = time.monotonic()
        for i, (job, interval) in enumerate(jobs):
            if now >= next_due[i]:
                job()
                next_due[i] = now + interval
        time.sleep(max(0.0, min(next_due) - time.monotonic()))


def main():
    parser = argparse.ArgumentParser(description="Run priority queue background jobs")
    parser.add_argument("--once", action="store_true", help="run each job once and exit")
    args = parser.parse_args()

    setup_logging()
    if args.once:
        run_schedule_job()
        run_sweep_job()
        return

    try:
        run_forever()
    except KeyboardInterrupt:
        logger.info("Job runner stopped")


if __name__ == "__main__":
    main()
