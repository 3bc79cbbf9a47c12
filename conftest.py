"""
Shared fixtures for job keeper tests.
"""

import time
from typing import Callable, List

import pytest

from jobkeeper.config import KeeperConfig, TimerConfig
from jobkeeper.service import JobKeeper
from jobkeeper.store import JobStore


class ManualHandle:
    def __init__(self, key):
        self.job_id = key
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualTimer:
    """Timer that only fires when a test tells it to."""

    def __init__(self):
        self.installed: List[tuple] = []
        self.running = False

    def schedule(self, due, on_fire: Callable[[], None], key: str) -> ManualHandle:
        handle = ManualHandle(key)
        self.installed.append((key, due, on_fire, handle))
        return handle

    def live(self, key: str = None) -> list:
        return [
            entry for entry in self.installed
            if not entry[3].cancelled and (key is None or entry[0] == key)
        ]

    def job_ids(self):
        return [entry[0] for entry in self.live()]

    def fire(self, key: str):
        """Fire every live timer installed under ``key``."""
        for _, _, on_fire, _ in self.live(key):
            on_fire()

    def fire_all_installed(self, key: str):
        """Fire every timer ever installed under ``key``, cancelled or not."""
        for entry in list(self.installed):
            if entry[0] == key:
                entry[2]()

    def start(self):
        self.running = True

    def shutdown(self, wait=True):
        self.running = False


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.05) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'jobs.db'}"


@pytest.fixture
def store(db_url):
    store = JobStore(db_url)
    store.create_tables()
    yield store
    store.close()


@pytest.fixture
def manual_timer():
    return ManualTimer()


@pytest.fixture
def make_keeper(db_url, manual_timer):
    """Build keepers on the test database; all are shut down afterwards."""
    keepers = []

    def factory(**kwargs):
        kwargs.setdefault('connection', db_url)
        kwargs.setdefault('timer', manual_timer)
        keeper = JobKeeper(**kwargs)
        keepers.append(keeper)
        return keeper

    yield factory
    for keeper in keepers:
        keeper.shutdown(wait=False)


@pytest.fixture
def keeper(make_keeper):
    return make_keeper()


@pytest.fixture
def live_config():
    return KeeperConfig(timer=TimerConfig(max_workers=4))
