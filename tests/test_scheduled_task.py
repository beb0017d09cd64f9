import asyncio
from datetime import timedelta

import pytest

from morax import runtimes
from morax.runtime import CanceledError
from morax.scheduled_task import schedule_with_fixed_delay


class TickTask:
    def __init__(self):
        self.n = 0

    async def __call__(self):
        self.n += 1


def test_schedule_with_fixed_delay():
    tick = TickTask()
    task = schedule_with_fixed_delay("TickTask", runtimes.test_runtime(), None, 0.1, tick)
    runtimes.test_runtime().block_on(asyncio.sleep(0.55))
    task.cancel()
    task.cancel()
    with pytest.raises(CanceledError):
        task.result(timeout=5)
    assert tick.n >= 4


def test_await_cancelled_task():
    tick = TickTask()
    task = schedule_with_fixed_delay(
        "AwaitTask", runtimes.test_runtime(), None, timedelta(milliseconds=50), tick
    )
    task.cancel()
    with pytest.raises(CanceledError):
        runtimes.test_runtime().block_on(task)


def test_failures_do_not_stop_schedule():
    calls = []

    def failing():
        calls.append(1)
        raise ValueError("boom")

    task = schedule_with_fixed_delay("Failing", runtimes.test_runtime(), 0, 0.05, failing)
    runtimes.test_runtime().block_on(asyncio.sleep(0.3))
    task.cancel()
    with pytest.raises(CanceledError):
        task.result(timeout=5)
    assert str(task) == "ScheduledTask(Failing)"
    assert len(calls) >= 2


def test_initial_delay_postpones_first_run():
    tick = TickTask()
    task = schedule_with_fixed_delay("Delayed", runtimes.test_runtime(), 1.0, 0.05, tick)
    runtimes.test_runtime().block_on(asyncio.sleep(0.2))
    task.cancel()
    assert tick.n == 0


def test_display():
    task = schedule_with_fixed_delay("Shown", runtimes.test_runtime(), None, 1.0, TickTask())
    try:
        assert str(task) == "ScheduledTask(Shown)"
    finally:
        task.cancel()