"""
Core job keeper service.

Keeps named jobs scheduled against durable storage:
- At most one stored record (and one live timer) per job name
- Stored jobs are rescheduled when a keeper is constructed
- Every firing re-reads the record before running handlers
- Removal is guarded against firings that are already in flight

Storage is a SQLAlchemy-backed JobStore and timers come from an
APScheduler-backed Timer. Completion of create/remove is reported through
error-first callbacks, ``callback(error, job)``.
"""

import logging
from dataclasses import asdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from sqlalchemy.engine import Engine

from jobkeeper.config import KeeperConfig
from jobkeeper.errors import ConfigurationError, DuplicateJobError, StorageError
from jobkeeper.models import Job, JobOptions
from jobkeeper.registry import HandlerRegistry, JobHandler
from jobkeeper.store import JobStore
from jobkeeper.table import JobState, SchedulingTable
from jobkeeper.timers import RecurrenceRule, Timer

logger = logging.getLogger(__name__)

JobCallback = Callable[[Optional[BaseException], Optional[Job]], Any]


def _noop(*args, **kwargs):
    pass


def _make_callback(callback: Optional[JobCallback]) -> JobCallback:
    if not callable(callback):
        return _noop
    return callback


class JobKeeper:
    """
    Persisted job scheduler.

    Each instance owns its own handler registry, scheduling table, store
    and timer; instances never share state.
    """

    RecurrenceRule = RecurrenceRule

    def __init__(
        self,
        connection: Union[str, Engine, JobStore, None] = None,
        config: Optional[KeeperConfig] = None,
        timer: Optional[Timer] = None,
        handlers: Optional[Dict[str, Union[JobHandler, Iterable[JobHandler]]]] = None,
        autostart: bool = True
    ):
        """
        Initialize the keeper and reschedule every stored job.

        Args:
            connection: Database URL, SQLAlchemy Engine or JobStore. Falls back
                        to ``config.database_url``.
            config: Keeper configuration (defaults if None)
            timer: Timer primitive (built from ``config.timer`` if None)
            handlers: Handlers to register before stored jobs are rescheduled,
                      keyed by job name
            autostart: Start the timer immediately; pass False and call
                       ``start()`` later to register handlers first

        Raises:
            ConfigurationError: No storage connection was given
        """
        self.config = config or KeeperConfig()

        if connection is None:
            connection = self.config.database_url
        if connection is None or connection == "":
            raise ConfigurationError(
                "You must pass a database URL, SQLAlchemy engine or JobStore to JobKeeper"
            )

        if isinstance(connection, JobStore):
            self.store = connection
        else:
            self.store = JobStore(connection)

        self.registry = HandlerRegistry()
        self.table = SchedulingTable()
        self.timer = timer or Timer(**asdict(self.config.timer))

        for name, registered in (handlers or {}).items():
            if callable(registered):
                registered = [registered]
            for handler in registered:
                self.add_job_handler(name, handler)

        self._reconcile()

        if autostart:
            self.start()

        logger.info(f"Job keeper initialized with store: {self.store.engine.url}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_job(
        self,
        name: str,
        options: Union[Dict[str, Any], JobOptions, JobCallback, None] = None,
        callback: Optional[JobCallback] = None
    ) -> Optional[Job]:
        """
        Create a named job, or return the existing one.

        Options: ``due`` (datetime, epoch seconds or ISO string; a
        RecurrenceRule or rule dict when ``recurring``), ``remove_on_complete``
        (default True), ``restart`` (default False), ``recurring`` (default
        False), ``data``. Other keys are stored in the record's ``extra``.

        If a job with this name exists it is returned unchanged; with
        ``restart`` its timer is cancelled and reinstalled first. Errors
        are passed to ``callback`` and never raised.

        Returns:
            The created or existing Job, or None on error
        """
        if callable(options) and callback is None:
            callback, options = options, None
        callback = _make_callback(callback)

        if not isinstance(name, str) or not name:
            error = ValueError(f"Job name must be a non-empty string, got {name!r}")
            logger.error(f"Error creating job: {error}")
            callback(error, None)
            return None

        try:
            opts = JobOptions.from_value(options)
            due = opts.resolved_due(self.config.default_delay_seconds)
        except (TypeError, ValueError) as e:
            logger.error(f"Invalid options for job '{name}': {e}")
            callback(e, None)
            return None

        try:
            job = self.store.find_by_name(name)
        except StorageError as e:
            logger.error(f"Error finding job '{name}': {e}")
            callback(e, None)
            return None

        if job:
            if opts.restart:
                self._restart_job(job)
            logger.debug(f"Job '{name}' already exists, due {job.due}")
            callback(None, job)
            return job

        logger.debug(f"Creating job '{name}' for {due}")
        try:
            job = self.store.create(
                name,
                due,
                recurring=opts.recurring,
                remove_on_complete=opts.remove_on_complete,
                data=opts.data,
                extra=opts.extra,
            )
        except DuplicateJobError:
            # another thread created it between our lookup and insert
            return self._existing_after_conflict(name, callback)
        except StorageError as e:
            logger.error(f"Error creating job '{name}': {e}")
            callback(e, None)
            return None

        self._schedule_job(job)
        callback(None, job)
        return job

    def remove_job(self, name: str, callback: Optional[JobCallback] = None) -> Optional[Job]:
        """
        Cancel a job's timer and delete its record.

        Removing a job that does not exist is not an error. Once the
        callback reports success no handler for ``name`` runs again from
        timers installed before this call.

        Returns:
            The removed Job, or None if there was nothing to remove
        """
        callback = _make_callback(callback)
        logger.debug(f"Cancelling job '{name}'")

        # before any storage call, so an in-flight firing sees it
        self.table.mark_cancelling(name)

        try:
            job = self.store.find_by_name(name)
        except StorageError as e:
            logger.error(f"Unable to remove job '{name}': {e}")
            self.table.clear_cancelling(name)
            callback(e, None)
            return None

        if not job:
            self.table.clear_cancelling(name)
            callback(None, None)
            return None

        self._cancel_job(job)
        try:
            self.store.remove(job)
        except StorageError as e:
            logger.error(f"Error removing job '{name}': {e}")
            callback(e, job)
            return job

        logger.debug(f"Removed job '{name}'")
        callback(None, job)
        return job

    def add_job_handler(self, name: str, handler: JobHandler) -> bool:
        """Register ``handler(job)`` to run whenever job ``name`` fires."""
        return self.registry.add(name, handler)

    def remove_job_handler(self, name: str, handler: JobHandler) -> bool:
        """Unregister one registration of ``handler`` for job ``name``."""
        return self.registry.remove(name, handler)

    def state(self, name: str) -> JobState:
        """Scheduling state of ``name`` in this process."""
        return self.table.state(name)

    def scheduled_jobs(self) -> List[str]:
        """Names of jobs with a live timer in this process."""
        return self.table.names()

    def start(self):
        """Start firing timers."""
        self.timer.start()

    def shutdown(self, wait: bool = True):
        """
        Stop the timer and release the store.

        Args:
            wait: If True, wait for running firings to complete
        """
        logger.info("Shutting down job keeper")
        self.timer.shutdown(wait=wait)
        self.store.close()

    def __enter__(self) -> 'JobKeeper':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _reconcile(self):
        """Install a timer for every stored job."""
        try:
            self.store.create_tables()
            jobs = self.store.find_all()
        except StorageError as e:
            logger.error(f"Failed to load stored jobs: {e}")
            return

        scheduled = 0
        for job in jobs:
            try:
                self._schedule_job(job)
                scheduled += 1
            except (TypeError, ValueError) as e:
                logger.error(f"Failed to schedule stored job '{job.name}': {e}")

        logger.info(f"Rescheduled {scheduled} stored job(s)")

    def _schedule_job(self, job: Job):
        job_id = job.id
        logger.debug(f"Scheduling job '{job.name}' for {job.due}")

        def on_fire():
            self._fire(job_id)

        # held until the handle is in the table so an immediate firing
        # cannot miss it
        with self.table.lock:
            handle = self.timer.schedule(job.due, on_fire, key=job_id)
            self.table.install(job.name, handle)

    def _restart_job(self, job: Job):
        logger.debug(f"Restarting job '{job.name}'")
        with self.table.lock:
            self._cancel_job(job)
            self._schedule_job(job)

    def _fire(self, job_id: str):
        """Timer callback: re-read the record and run it if still scheduled."""
        try:
            job = self.store.find_by_id(job_id)
        except StorageError as e:
            logger.error(f"Failed to load job {job_id} for firing: {e}")
            return

        if job is None:
            logger.debug(f"Job {job_id} no longer stored, ignoring firing")
            return

        # held through dispatch so a removal cannot finish between the
        # scheduled check and the handlers
        with self.table.lock:
            if not self.table.has_timer(job.name):
                logger.debug(f"Job '{job.name}' is not scheduled, ignoring firing")
                return

            self._run_job(job)

    def _run_job(self, job: Job):
        if self.table.is_cancelling(job.name):
            logger.warning(f"Trying to run currently cancelling job '{job.name}'")
            self.remove_job(job.name)
            self._cancel_job(job)
            return

        logger.debug(f"Running job '{job.name}'")
        handlers = self.registry.handlers(job.name)
        if not handlers:
            logger.warning(f"Job '{job.name}' ran without handlers")
        for handler in handlers:
            handler(job)

        if job.remove_on_complete:
            self.remove_job(job.name)

    def _cancel_job(self, job: Job):
        logger.debug(f"Cancelling timer for job '{job.name}'")
        with self.table.lock:
            handle = self.table.pop(job.name)
            if handle:
                handle.cancel()
            self.table.clear_cancelling(job.name)

    def _existing_after_conflict(self, name: str, callback: JobCallback) -> Optional[Job]:
        try:
            job = self.store.find_by_name(name)
        except StorageError as e:
            logger.error(f"Error finding job '{name}': {e}")
            callback(e, None)
            return None
        if job is None:
            error = StorageError("create", f"job '{name}' conflicted but could not be found")
            logger.error(f"Error creating job '{name}': {error}")
            callback(error, None)
            return None
        callback(None, job)
        return job
