"""
Command-line interface for the job keeper.

Provides CLI commands for:
- Running a keeper in the foreground
- Adding/removing/listing stored jobs
- Managing configuration

Jobs added from the CLI are only written to storage; a running keeper
picks them up when it is restarted.
"""

import argparse
import json
import logging
import sys
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

from jobkeeper.config import KeeperConfig
from jobkeeper.errors import DuplicateJobError, StorageError
from jobkeeper.models import JobOptions, encode_due
from jobkeeper.service import JobKeeper
from jobkeeper.store import JobStore

logger = logging.getLogger(__name__)


def setup_logging(log_file: str = None, verbose: bool = False, level: str = "INFO"):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)


def _open_store(config: KeeperConfig) -> JobStore:
    store = JobStore(config.database_url)
    store.create_tables()
    return store


def _log_firing(job):
    logger.info(f"Job '{job.name}' fired (data: {json.dumps(job.data)})")


def cmd_run(args):
    """Run a keeper in the foreground until interrupted."""
    config = KeeperConfig.load(args.config)
    setup_logging(
        log_file=args.log_file or config.logging.file,
        verbose=args.verbose,
        level=config.logging.level
    )

    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"  - {error}")
        sys.exit(1)

    try:
        keeper = JobKeeper(config=config, autostart=False)
        # the CLI has no application handlers, so every stored job logs its firing
        for job in keeper.store.find_all():
            keeper.add_job_handler(job.name, _log_firing)
        keeper.start()
    except Exception as e:
        logger.error(f"Failed to start job keeper: {e}", exc_info=True)
        sys.exit(1)

    logger.info("Running in foreground mode. Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
        keeper.shutdown()


def cmd_list(args):
    """List stored jobs."""
    config = KeeperConfig.load(args.config)
    setup_logging(verbose=args.verbose, level="WARNING")

    try:
        store = _open_store(config)
        jobs = store.find_all()
        store.close()
    except StorageError as e:
        logger.error(f"Failed to list jobs: {e}")
        sys.exit(1)

    if args.json:
        print(json.dumps([job.to_dict() for job in jobs], indent=2, default=str))
        return

    if not jobs:
        print("No jobs stored")
        return

    print(f"\n{len(jobs)} stored job(s):\n")
    for job in jobs:
        kind = "recurring" if job.recurring else "one-shot"
        print(f"  Name:     {job.name}")
        print(f"  Due:      {encode_due(job.due)} ({kind})")
        print(f"  Remove:   {'on complete' if job.remove_on_complete else 'never'}")
        print(f"  Created:  {job.created.isoformat() if job.created else 'N/A'}")
        if job.data is not None:
            print(f"  Data:     {json.dumps(job.data)}")
        print()


def _build_options(args) -> JobOptions:
    rule_fields = ('second', 'minute', 'hour', 'day', 'day_of_week', 'month')
    if args.recurring:
        due = {}
        for name in rule_fields:
            value = getattr(args, name)
            due[name] = None if value == '*' else value
    elif args.at:
        due = datetime.strptime(args.at, "%Y-%m-%d %H:%M")
    elif args.in_seconds is not None:
        due = datetime.now(timezone.utc) + timedelta(seconds=args.in_seconds)
    else:
        due = None

    return JobOptions(
        due=due,
        recurring=args.recurring,
        remove_on_complete=not args.keep,
        data=json.loads(args.data) if args.data else None,
    )


def cmd_add(args):
    """Add a stored job."""
    config = KeeperConfig.load(args.config)
    setup_logging(verbose=args.verbose)

    try:
        opts = _build_options(args)
        due = opts.resolved_due(config.default_delay_seconds)
    except (TypeError, ValueError) as e:
        logger.error(f"Invalid job options: {e}")
        sys.exit(1)

    try:
        store = _open_store(config)
        job = store.create(
            args.name,
            due,
            recurring=opts.recurring,
            remove_on_complete=opts.remove_on_complete,
            data=opts.data,
        )
        store.close()
    except DuplicateJobError:
        logger.error(f"Job '{args.name}' already exists")
        sys.exit(1)
    except StorageError as e:
        logger.error(f"Failed to add job: {e}")
        sys.exit(1)

    logger.info(f"Added job '{job.name}' due {encode_due(job.due)}")
    logger.info("Restart the keeper for changes to take effect")


def cmd_remove(args):
    """Remove a stored job."""
    config = KeeperConfig.load(args.config)
    setup_logging(verbose=args.verbose)

    try:
        store = _open_store(config)
        job = store.find_by_name(args.name)
        if job:
            store.remove(job)
        store.close()
    except StorageError as e:
        logger.error(f"Failed to remove job: {e}")
        sys.exit(1)

    if not job:
        logger.error(f"Job '{args.name}' not found")
        sys.exit(1)

    logger.info(f"Removed job '{args.name}'")
    logger.info("Restart the keeper for changes to take effect")


def cmd_init(args):
    """Initialize keeper configuration and storage."""
    config = KeeperConfig.load(args.config)
    setup_logging(verbose=args.verbose)

    try:
        path = config.save(args.config)
        logger.info(f"Initialized configuration at: {path}")

        store = _open_store(config)
        store.close()
        logger.info(f"Initialized job storage at: {config.database_url}")

        log_dir = Path(config.logging.file).expanduser().parent
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created log directory: {log_dir}")

    except (OSError, StorageError) as e:
        logger.error(f"Failed to initialize: {e}")
        sys.exit(1)


def cmd_show_config(args):
    """Show current configuration."""
    config = KeeperConfig.load(args.config)
    setup_logging(verbose=args.verbose, level="WARNING")

    print(f"\nConfiguration file: {config.config_path}")
    print(f"Database: {config.database_url}")
    print(f"Default delay: {config.default_delay_seconds} seconds")
    print(f"Logging level: {config.logging.level}")
    print(f"Log file: {config.logging.file}")
    print(f"Timer workers: {config.timer.max_workers}")
    print(f"Misfire grace time: {config.timer.misfire_grace_time}")

    errors = config.validate()
    if errors:
        print("\nProblems:")
        for error in errors:
            print(f"  - {error}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jobkeeper",
        description="Job Keeper - persisted named jobs with one-shot and recurring schedules",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '-c', '--config',
        type=str,
        help='Path to keeper configuration file'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Run command
    run_parser = subparsers.add_parser('run', help='Run a keeper in the foreground')
    run_parser.add_argument('--log-file', type=str, help='Log file path')
    run_parser.set_defaults(func=cmd_run)

    # List command
    list_parser = subparsers.add_parser('list', help='List stored jobs')
    list_parser.add_argument('--json', action='store_true', help='Output in JSON format')
    list_parser.set_defaults(func=cmd_list)

    # Add command
    add_parser = subparsers.add_parser('add', help='Add a stored job')
    add_parser.add_argument('name', help='Job name')

    due_group = add_parser.add_mutually_exclusive_group()
    due_group.add_argument('--at', type=str, help='Due time (YYYY-MM-DD HH:MM, local time)')
    due_group.add_argument('--in', dest='in_seconds', type=int, help='Due in N seconds')
    due_group.add_argument('--recurring', action='store_true', help='Recurring job (use rule fields)')

    # Recurrence rule fields ('*' = every value)
    add_parser.add_argument('--second', type=str, default='0', help="Rule second (default: 0)")
    add_parser.add_argument('--minute', type=str, default='*', help="Rule minute")
    add_parser.add_argument('--hour', type=str, default='*', help="Rule hour")
    add_parser.add_argument('--day', type=str, default='*', help="Rule day of month")
    add_parser.add_argument('--day-of-week', type=str, default='*', help="Rule day of week (mon-sun)")
    add_parser.add_argument('--month', type=str, default='*', help="Rule month")

    add_parser.add_argument('--keep', action='store_true',
                            help='Keep the record after it fires (default: remove on complete)')
    add_parser.add_argument('--data', type=str, help='JSON payload stored with the job')
    add_parser.set_defaults(func=cmd_add)

    # Remove command
    remove_parser = subparsers.add_parser('remove', help='Remove a stored job')
    remove_parser.add_argument('name', help='Job name to remove')
    remove_parser.set_defaults(func=cmd_remove)

    # Init command
    init_parser = subparsers.add_parser('init', help='Initialize configuration and storage')
    init_parser.set_defaults(func=cmd_init)

    # Show config command
    show_config_parser = subparsers.add_parser('show-config', help='Show configuration')
    show_config_parser.set_defaults(func=cmd_show_config)

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == '__main__':
    main()
