#!/usr/bin/env python3
"""
Basic Usage Examples for JobKeeper

This script demonstrates one-shot jobs, recurring jobs, and how stored
jobs come back after a keeper restarts.
"""

import logging
import sys
import tempfile
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add parent directory to path for imports (if running as standalone script)
sys.path.insert(0, str(Path(__file__).parent.parent))

from jobkeeper import JobKeeper, RecurrenceRule


def example_1_one_shot(database_url):
    """Example 1: A one-shot job that removes itself after firing"""
    print("\n" + "=" * 60)
    print("Example 1: One-shot job")
    print("=" * 60)

    with JobKeeper(database_url) as keeper:
        keeper.add_job_handler('send-welcome', lambda job: print(f"  Fired {job.name} with {job.data}"))

        due = datetime.now(timezone.utc) + timedelta(seconds=1)
        keeper.create_job('send-welcome', {'due': due, 'data': {'user': 42}},
                          lambda err, job: print(f"  Created {job.name} due {job.due}"))

        time.sleep(2)
        print(f"  Still stored: {keeper.store.find_by_name('send-welcome') is not None}")


def example_2_recurring(database_url):
    """Example 2: A recurring job that fires every second until removed"""
    print("\n" + "=" * 60)
    print("Example 2: Recurring job")
    print("=" * 60)

    with JobKeeper(database_url) as keeper:
        keeper.add_job_handler('heartbeat', lambda job: print(f"  Tick at {datetime.now():%H:%M:%S}"))
        keeper.create_job('heartbeat', {
            'due': RecurrenceRule(second=None),
            'recurring': True,
            'remove_on_complete': False,
        })

        time.sleep(3.5)
        keeper.remove_job('heartbeat', lambda err, job: print(f"  Removed {job.name}"))


def example_3_restart(database_url):
    """Example 3: Stored jobs are rescheduled by the next keeper"""
    print("\n" + "=" * 60)
    print("Example 3: Jobs survive a restart")
    print("=" * 60)

    first = JobKeeper(database_url)
    first.create_job('nightly-report', {'due': datetime.now(timezone.utc) + timedelta(seconds=2)})
    first.shutdown()
    print("  First keeper stopped before the job was due")

    second = JobKeeper(
        database_url,
        handlers={'nightly-report': lambda job: print(f"  {job.name} fired after restart")},
    )
    time.sleep(3)
    second.shutdown()


def main():
    """Run all examples"""
    logging.basicConfig(level=logging.WARNING)

    with tempfile.TemporaryDirectory() as temp_dir:
        database_url = f"sqlite:///{Path(temp_dir) / 'jobs.db'}"

        example_1_one_shot(database_url)
        example_2_recurring(database_url)
        example_3_restart(database_url)


if __name__ == "__main__":
    main()
