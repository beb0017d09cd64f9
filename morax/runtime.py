"""Task runtimes: event-loop worker threads plus a pool for blocking calls."""

from __future__ import annotations

import asyncio
import concurrent.futures
import itertools
import os
import threading
from datetime import timedelta
from typing import Any, Awaitable, Callable, Coroutine, Generator, Generic, TypeVar

T = TypeVar("T")

_RUNTIME_IDS = itertools.count()
_DEFAULT_MAX_BLOCKING_THREADS = 512
_DEFAULT_KEEP_ALIVE = 10.0
_DRAIN_TIMEOUT = 5.0


class CanceledError(Exception):
    """Raised when the result of a cancelled task is requested."""

    def __init__(self, message: str = "task was canceled") -> None:
        super().__init__(message)


class JoinHandle(Generic[T]):
    """Handle to a task started on a runtime; awaitable or waited on with ``result``."""

    __slots__ = ("_future",)

    def __init__(self, future: concurrent.futures.Future) -> None:
        self._future = future

    def cancel(self) -> None:
        """Request cancellation of the task; harmless if it already finished."""
        self._future.cancel()

    def result(self, timeout: float | None = None) -> T:
        """Block until the task finishes and return its value.

        Exceptions raised by the task propagate; a cancelled task raises
        :class:`CanceledError`.
        """
        try:
            return self._future.result(timeout)
        except concurrent.futures.CancelledError:
            raise CanceledError() from None

    async def _wait(self) -> T:
        try:
            return await asyncio.wrap_future(self._future)
        except asyncio.CancelledError:
            if self._future.cancelled():
                raise CanceledError() from None
            raise

    def __await__(self) -> Generator[Any, None, T]:
        return self._wait().__await__()

    def __repr__(self) -> str:
        return f"JoinHandle({self._future!r})"


def _seconds(value: float | timedelta) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


async def _cancel_all_tasks() -> None:
    current = asyncio.current_task()
    tasks = [task for task in asyncio.all_tasks() if task is not current]
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


class _Worker:
    """One event loop running forever on its own thread."""

    def __init__(self, thread_name: str) -> None:
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self._run, name=thread_name, daemon=True)
        self.thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def stop(self) -> None:
        if threading.current_thread() is self.thread:
            self.loop.stop()
            return
        drain = asyncio.run_coroutine_threadsafe(_cancel_all_tasks(), self.loop)
        try:
            drain.result(_DRAIN_TIMEOUT)
        except concurrent.futures.TimeoutError:
            pass
        self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join()
        self.loop.close()


class Runtime:
    """A pool of event-loop threads that run coroutines, plus a blocking-call pool."""

    def __init__(
        self,
        name: str,
        worker_threads: int = 1,
        thread_name: str = "default-worker",
        max_blocking_threads: int = _DEFAULT_MAX_BLOCKING_THREADS,
        thread_keep_alive: float | timedelta = _DEFAULT_KEEP_ALIVE,
    ) -> None:
        if worker_threads < 1:
            raise ValueError("worker threads cannot be set to 0")
        if max_blocking_threads < 1:
            raise ValueError("max blocking threads cannot be set to 0")
        self.name = name
        self.thread_name = thread_name
        self.thread_keep_alive = _seconds(thread_keep_alive)
        self._blocking = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_blocking_threads, thread_name_prefix=thread_name
        )
        self._workers = [_Worker(thread_name) for _ in range(worker_threads)]
        self._next_worker = itertools.cycle(self._workers)
        self._lock = threading.Lock()
        self._closed = False

    def spawn(self, coro: Coroutine[Any, Any, T]) -> JoinHandle[T]:
        """Schedule a coroutine on one of the worker loops."""
        with self._lock:
            if self._closed:
                coro.close()
                raise RuntimeError(f"runtime {self.name} is shut down")
            worker = next(self._next_worker)
        return JoinHandle(asyncio.run_coroutine_threadsafe(coro, worker.loop))

    def spawn_blocking(self, func: Callable[[], T]) -> JoinHandle[T]:
        """Run a blocking function on the dedicated blocking pool."""
        with self._lock:
            if self._closed:
                raise RuntimeError(f"runtime {self.name} is shut down")
            return JoinHandle(self._blocking.submit(func))

    def block_on(self, coro: Awaitable[T]) -> T:
        """Drive an awaitable to completion on the calling thread."""

        async def drive() -> T:
            return await coro

        return asyncio.run(drive())

    def shutdown(self) -> None:
        """Cancel outstanding tasks and stop every thread of the runtime."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        for worker in self._workers:
            worker.stop()
        self._blocking.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> Runtime:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        return f"Runtime(name={self.name!r}, worker_threads={len(self._workers)})"


class Builder:
    """Fluent configuration for a :class:`Runtime`."""

    def __init__(self) -> None:
        self._runtime_name = f"runtime-{next(_RUNTIME_IDS)}"
        self._thread_name = "default-worker"
        self._worker_threads = os.cpu_count() or 1
        self._max_blocking_threads = _DEFAULT_MAX_BLOCKING_THREADS
        self._thread_keep_alive = _DEFAULT_KEEP_ALIVE

    def worker_threads(self, val: int) -> Builder:
        """Set the number of worker threads; must be above 0."""
        if val < 1:
            raise ValueError("worker threads cannot be set to 0")
        self._worker_threads = val
        return self

    def max_blocking_threads(self, val: int) -> Builder:
        """Set the limit of threads used for blocking calls; defaults to 512."""
        if val < 1:
            raise ValueError("max blocking threads cannot be set to 0")
        self._max_blocking_threads = val
        return self

    def thread_keep_alive(self, duration: float | timedelta) -> Builder:
        """Set the idle timeout of blocking threads, in seconds or as a timedelta."""
        self._thread_keep_alive = _seconds(duration)
        return self

    def runtime_name(self, val: str) -> Builder:
        self._runtime_name = str(val)
        return self

    def thread_name(self, val: str) -> Builder:
        """Set the name of threads spawned by the runtime."""
        self._thread_name = str(val)
        return self

    def build(self) -> Runtime:
        return Runtime(
            self._runtime_name,
            worker_threads=self._worker_threads,
            thread_name=self._thread_name,
            max_blocking_threads=self._max_blocking_threads,
            thread_keep_alive=self._thread_keep_alive,
        )