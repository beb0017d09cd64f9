"""Run a task repeatedly on a runtime with a fixed delay between runs."""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import timedelta
from typing import Any, Callable, Generator

from morax.runtime import JoinHandle, Runtime

logger = logging.getLogger(__name__)


def _seconds(value: float | timedelta) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class ScheduledTask:
    """A named repeating task; awaiting it raises CanceledError once cancelled."""

    def __init__(self, name: str, handle: JoinHandle) -> None:
        self.name = name
        self._handle = handle

    def cancel(self) -> None:
        logger.info("cancelling scheduled task: %s", self.name)
        self._handle.cancel()

    def result(self, timeout: float | None = None) -> Any:
        """Block until the task ends; a cancelled task raises CanceledError."""
        return self._handle.result(timeout)

    def __await__(self) -> Generator[Any, None, Any]:
        return self._handle.__await__()

    def __str__(self) -> str:
        return f"ScheduledTask({self.name})"


def schedule_with_fixed_delay(
    name: str,
    runtime: Runtime,
    initial_delay: float | timedelta | None,
    delay: float | timedelta,
    task_fn: Callable[[], Any],
) -> ScheduledTask:
    """Call ``task_fn`` forever, sleeping ``delay`` after each call.

    ``task_fn`` may return an awaitable, which is awaited. Failures are logged
    and do not stop the schedule.
    """
    name = str(name)
    first = _seconds(initial_delay) if initial_delay is not None else 0.0
    pause = _seconds(delay)

    async def run() -> None:
        if first > 0:
            await asyncio.sleep(first)
        while True:
            try:
                outcome = task_fn()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("failed to run scheduled task: %s", name)
            await asyncio.sleep(pause)

    return ScheduledTask(name, runtime.spawn(run()))