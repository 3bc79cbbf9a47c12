"""
Tests for the handler registry and scheduling table.
"""

from jobkeeper.registry import HandlerRegistry
from jobkeeper.table import JobState, SchedulingTable
from jobkeeper.timers import TimerHandle


def first(job):
    pass


def second(job):
    pass


def test_handlers_keep_registration_order():
    registry = HandlerRegistry()
    registry.add('job', first)
    registry.add('job', second)
    registry.add('job', first)

    assert registry.handlers('job') == [first, second, first]
    assert registry.handlers('other') == []


def test_non_callable_handlers_are_rejected():
    registry = HandlerRegistry()

    assert registry.add('job', 'not a function') is False
    assert registry.handlers('job') == []


def test_remove_takes_first_match_only():
    registry = HandlerRegistry()
    registry.add('job', first)
    registry.add('job', second)
    registry.add('job', first)

    assert registry.remove('job', first) is True
    assert registry.handlers('job') == [second, first]

    assert registry.remove('job', lambda job: None) is False
    assert registry.remove('missing', first) is False


def test_names_drop_empty_lists():
    registry = HandlerRegistry()
    registry.add('job', first)
    registry.remove('job', first)

    assert registry.names() == []


class FakeScheduler:
    def remove_job(self, job_id):
        pass


def test_table_state_machine():
    table = SchedulingTable()
    handle = TimerHandle(FakeScheduler(), 'id-1')

    assert table.state('job') == JobState.ABSENT

    table.install('job', handle)
    assert table.state('job') == JobState.SCHEDULED
    assert table.has_timer('job')

    table.mark_cancelling('job')
    assert table.state('job') == JobState.CANCELLING

    assert table.pop('job') is handle
    table.clear_cancelling('job')
    assert table.state('job') == JobState.ABSENT
    assert table.names() == []


def test_cancelling_without_timer():
    table = SchedulingTable()
    table.mark_cancelling('job')

    assert table.state('job') == JobState.CANCELLING
    assert table.pop('job') is None

    table.clear_cancelling('job')
    table.clear_cancelling('job')
    assert table.state('job') == JobState.ABSENT
