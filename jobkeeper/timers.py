"""
Timer primitive backed by APScheduler.

Converts an absolute due time or a recurrence rule into future callback
invocations on a background thread pool. The keeper never fires jobs
itself; it asks a Timer for a handle and cancels that handle when the
job goes away.
"""

import logging
from dataclasses import dataclass, asdict, fields
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.events import (
    EVENT_JOB_EXECUTED,
    EVENT_JOB_ERROR,
    EVENT_JOB_MISSED,
)

logger = logging.getLogger(__name__)

RuleField = Optional[Union[int, str]]


@dataclass
class RecurrenceRule:
    """
    Structured description of a repeating due pattern.

    Each field is either a value (int, or a cron field expression such as
    "*/5" or "mon-fri") or None, meaning "every value of this field".
    ``second`` defaults to 0 so an empty rule fires once a minute; use
    ``RecurrenceRule(second=None)`` to fire every second.

    Day-of-week values follow APScheduler: 0 (or "mon") is Monday.
    """
    year: RuleField = None
    month: RuleField = None
    day: RuleField = None
    week: RuleField = None
    day_of_week: RuleField = None
    hour: RuleField = None
    minute: RuleField = None
    second: RuleField = 0

    def to_trigger(self, tz=None) -> CronTrigger:
        """Build the APScheduler cron trigger for this rule."""
        # every field is passed explicitly; CronTrigger otherwise pins
        # lower fields to their minimum
        kwargs = {
            f.name: '*' if getattr(self, f.name) is None else getattr(self, f.name)
            for f in fields(self)
        }
        if tz is not None:
            kwargs['timezone'] = tz
        return CronTrigger(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'RecurrenceRule':
        """Create from a stored rule document, ignoring unknown keys."""
        data = data or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


DueSpec = Union[datetime, RecurrenceRule]


class TimerHandle:
    """A live timer installed by :class:`Timer`. ``cancel()`` is idempotent."""

    def __init__(self, scheduler: BackgroundScheduler, job_id: str):
        self._scheduler = scheduler
        self.job_id = job_id
        self.cancelled = False

    def cancel(self):
        if self.cancelled:
            return
        self.cancelled = True
        try:
            self._scheduler.remove_job(self.job_id)
        except JobLookupError:
            # one-shot timers are dropped by APScheduler once they fire
            logger.debug(f"Timer '{self.job_id}' already gone")

    def __repr__(self):
        state = "cancelled" if self.cancelled else "live"
        return f"TimerHandle({self.job_id}, {state})"


class Timer:
    """
    Timer primitive using an APScheduler BackgroundScheduler.

    Firings run on a thread pool. Exceptions raised by a firing are not
    swallowed: they surface as APScheduler job errors and are logged by
    the error listener installed here.
    """

    def __init__(
        self,
        max_workers: int = 5,
        misfire_grace_time: Optional[int] = None,
        coalesce: bool = True,
        timezone: Optional[str] = None
    ):
        """
        Initialize the timer primitive.

        Args:
            max_workers: Maximum number of concurrent firings
            misfire_grace_time: Seconds a late firing is still allowed to run
                                (None = run no matter how late)
            coalesce: Combine multiple missed runs of a recurring rule into one
            timezone: Timezone name for recurrence rules (None = local time)
        """
        executors = {
            'default': ThreadPoolExecutor(max_workers)
        }

        job_defaults = {
            'coalesce': coalesce,
            'max_instances': 1,
            'misfire_grace_time': misfire_grace_time
        }

        options = {}
        if timezone:
            options['timezone'] = timezone

        self.scheduler = BackgroundScheduler(
            executors=executors,
            job_defaults=job_defaults,
            **options
        )
        self.timezone = timezone

        self._setup_event_listeners()

    def _setup_event_listeners(self):
        """Setup APScheduler event listeners for logging."""

        def job_executed_listener(event):
            logger.debug(f"Timer '{event.job_id}' fired")

        def job_error_listener(event):
            logger.error(
                f"Timer '{event.job_id}' raised exception: {event.exception}\n{event.traceback}"
            )

        def job_missed_listener(event):
            logger.warning(f"Timer '{event.job_id}' missed scheduled run time")

        self.scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)
        self.scheduler.add_listener(job_missed_listener, EVENT_JOB_MISSED)

    def _trigger_for(self, due: DueSpec):
        if isinstance(due, RecurrenceRule):
            return due.to_trigger(self.timezone)

        if due.tzinfo is None:
            due = due.astimezone()
        now = datetime.now(timezone.utc)
        # past due times fire as soon as possible
        return DateTrigger(run_date=max(due, now))

    def schedule(self, due: DueSpec, on_fire: Callable[[], None], key: str) -> TimerHandle:
        """
        Invoke ``on_fire`` at ``due``.

        Args:
            due: Absolute datetime (naive = local time) or RecurrenceRule
            on_fire: Zero-argument callable run on each firing
            key: Timer identifier; installing a second timer with the same
                 key replaces the first

        Returns:
            TimerHandle for cancelling the timer
        """
        trigger = self._trigger_for(due)
        self.scheduler.add_job(
            on_fire,
            trigger,
            id=key,
            name=key,
            replace_existing=True
        )
        logger.debug(f"Installed timer '{key}' ({trigger})")
        return TimerHandle(self.scheduler, key)

    def job_ids(self) -> List[str]:
        """Identifiers of timers that still have a pending firing."""
        return [job.id for job in self.scheduler.get_jobs()]

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self):
        """Start dispatching firings."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.debug("Timer started")

    def shutdown(self, wait: bool = True):
        """
        Stop dispatching firings.

        Args:
            wait: If True, wait for running firings to complete
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.debug("Timer stopped")
