"""
Job Keeper

A persisted job scheduler: named jobs with a due time or recurrence rule
are stored durably, fire their registered handlers on time, and are
rescheduled from storage whenever a keeper starts.

Features:
- At most one stored job per name
- One-shot and recurring jobs
- Remove-on-complete for one-shot jobs
- Durable storage through SQLAlchemy
- Timers through APScheduler
"""

from jobkeeper.config import KeeperConfig
from jobkeeper.errors import ConfigurationError, DuplicateJobError, JobKeeperError, StorageError
from jobkeeper.models import Job, JobOptions
from jobkeeper.service import JobKeeper
from jobkeeper.store import JobStore
from jobkeeper.table import JobState
from jobkeeper.timers import RecurrenceRule, Timer

__version__ = "0.1.0"
__all__ = [
    "JobKeeper",
    "Job",
    "JobOptions",
    "JobState",
    "JobStore",
    "KeeperConfig",
    "RecurrenceRule",
    "Timer",
    "JobKeeperError",
    "ConfigurationError",
    "StorageError",
    "DuplicateJobError",
]
