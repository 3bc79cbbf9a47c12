"""
Timing tests against the real APScheduler-backed timer.

Waits are bounded; each test finishes in a few seconds.
"""

import threading
import time
from datetime import datetime, timedelta, timezone

from jobkeeper import JobState, RecurrenceRule

from conftest import wait_for


class Recorder:
    def __init__(self, expected=1):
        self.names = []
        self._lock = threading.Lock()
        self._expected = expected
        self.done = threading.Event()

    def __call__(self, job):
        with self._lock:
            self.names.append(job.name)
            if len(self.names) >= self._expected:
                self.done.set()

    @property
    def count(self):
        with self._lock:
            return len(self.names)


def test_one_shot_job_fires_once_and_is_removed(make_keeper, live_config, store):
    recorder = Recorder()
    keeper = make_keeper(config=live_config, timer=None)
    keeper.add_job_handler('one-shot', recorder)

    keeper.create_job('one-shot', {'due': datetime.now(timezone.utc) + timedelta(milliseconds=200)})

    assert recorder.done.wait(5)
    assert wait_for(lambda: store.find_by_name('one-shot') is None)
    time.sleep(0.5)
    assert recorder.count == 1
    assert keeper.state('one-shot') == JobState.ABSENT


def test_recurring_job_fires_until_removed(make_keeper, live_config, store):
    recorder = Recorder(expected=3)
    keeper = make_keeper(config=live_config, timer=None)
    keeper.add_job_handler('every-second', recorder)

    keeper.create_job('every-second', {
        'due': RecurrenceRule(second=None),
        'recurring': True,
        'remove_on_complete': False,
    })

    assert recorder.done.wait(6)
    keeper.remove_job('every-second')
    fired = recorder.count
    time.sleep(2)

    assert recorder.count == fired
    assert store.find_by_name('every-second') is None


def test_removed_job_never_fires(make_keeper, live_config):
    recorder = Recorder()
    keeper = make_keeper(config=live_config, timer=None)
    keeper.add_job_handler('cancelled', recorder)

    keeper.create_job('cancelled', {'due': datetime.now(timezone.utc) + timedelta(milliseconds=500)})
    keeper.remove_job('cancelled')

    assert not recorder.done.wait(1.5)


def test_stored_jobs_fire_after_restart(make_keeper, live_config, store):
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    near = datetime.now(timezone.utc) + timedelta(milliseconds=300)
    store.create('overdue', past)
    store.create('upcoming', near)

    recorder = Recorder(expected=2)
    make_keeper(
        config=live_config,
        timer=None,
        handlers={'overdue': recorder, 'upcoming': recorder},
    )

    assert recorder.done.wait(5)
    assert sorted(recorder.names) == ['overdue', 'upcoming']
    assert wait_for(lambda: store.find_all() == [])
