"""Process-wide runtimes for API, execution, meta, data and background work."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass

from morax.runtime import Builder, Runtime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeOptions:
    """Worker thread counts of the global runtimes."""

    api_runtime_threads: int = 1
    exec_runtime_threads: int = 1
    meta_runtime_threads: int = 1
    data_runtime_threads: int = 1
    bg_runtime_threads: int = 1


@dataclass(frozen=True)
class _GlobalRuntimes:
    api_runtime: Runtime
    exec_runtime: Runtime
    meta_runtime: Runtime
    data_runtime: Runtime
    bg_runtime: Runtime


_LOCK = threading.Lock()
_GLOBAL: _GlobalRuntimes | None = None
_TEST_RUNTIME: Runtime | None = None


def make_runtime(runtime_name: str, thread_name: str, worker_threads: int) -> Runtime:
    logger.info(
        "creating runtime with runtime_name: %s, thread_name: %s, work_threads: %s.",
        runtime_name,
        thread_name,
        worker_threads,
    )
    return (
        Builder()
        .runtime_name(runtime_name)
        .thread_name(thread_name)
        .worker_threads(worker_threads)
        .build()
    )


def test_runtime() -> Runtime:
    """Shared runtime for tests, created on first use."""
    global _TEST_RUNTIME
    with _LOCK:
        if _TEST_RUNTIME is None:
            _TEST_RUNTIME = make_runtime("test_runtime", "test_runtime", 4)
        return _TEST_RUNTIME


def _setup_panic_hook() -> None:
    previous = threading.excepthook

    def hook(args: threading.ExceptHookArgs) -> None:
        if issubclass(args.exc_type, SystemExit):
            previous(args)
            return
        thread_name = args.thread.name if args.thread is not None else "unknown"
        logger.error(
            "panic occurred in thread %s",
            thread_name,
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )
        previous(args)
        shutdown()

    threading.excepthook = hook


def _initialize(opts: RuntimeOptions) -> _GlobalRuntimes:
    logger.info("initializing global runtimes: %s", opts)
    _setup_panic_hook()
    return _GlobalRuntimes(
        api_runtime=make_runtime("api_runtime", "api_thread", opts.api_runtime_threads),
        exec_runtime=make_runtime("exec_runtime", "exec_thread", opts.exec_runtime_threads),
        meta_runtime=make_runtime("meta_runtime", "meta_thread", opts.meta_runtime_threads),
        data_runtime=make_runtime("data_runtime", "data_thread", opts.data_runtime_threads),
        bg_runtime=make_runtime("bg_runtime", "bg_thread", opts.bg_runtime_threads),
    )


def _get_or_init(opts: RuntimeOptions) -> _GlobalRuntimes:
    global _GLOBAL
    with _LOCK:
        if _GLOBAL is None:
            _GLOBAL = _initialize(opts)
        return _GLOBAL


def init(opts: RuntimeOptions) -> None:
    """Create the global runtimes unless they already exist."""
    _get_or_init(opts)


def api_runtime() -> Runtime:
    return _get_or_init(RuntimeOptions()).api_runtime


def exec_runtime() -> Runtime:
    return _get_or_init(RuntimeOptions()).exec_runtime


def meta_runtime() -> Runtime:
    return _get_or_init(RuntimeOptions()).meta_runtime


def data_runtime() -> Runtime:
    return _get_or_init(RuntimeOptions()).data_runtime


def bg_runtime() -> Runtime:
    return _get_or_init(RuntimeOptions()).bg_runtime


def shutdown() -> None:
    """Terminate the whole process with exit status 1."""
    logger.info("The Global Runtimes are shutting down.")
    for handler in logging.getLogger().handlers:
        handler.flush()
    os._exit(1)