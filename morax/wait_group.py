"""A wait group: block until every cloned handle has been released."""

from __future__ import annotations

import asyncio
import threading


def _resolve(fut: asyncio.Future) -> None:
    if not fut.done():
        fut.set_result(None)


class _State:
    def __init__(self) -> None:
        self.cond = threading.Condition()
        self.count = 0
        self.waiters: list[asyncio.Future] = []


class WaitGroup:
    """Shared counter of live handles.

    Each worker takes a handle with :meth:`clone` and releases it with
    :meth:`done` (or by leaving a ``with`` block). The owner waits with
    :meth:`wait` or :meth:`wait_async`, which release the owner's own handle
    and return once no handle is left.
    """

    def __init__(self) -> None:
        self._state = _State()
        self._state.count = 1
        self._released = False

    @classmethod
    def _attach(cls, state: _State) -> WaitGroup:
        handle = cls.__new__(cls)
        handle._state = state
        handle._released = False
        return handle

    def clone(self) -> WaitGroup:
        """Return a new handle sharing this group."""
        state = self._state
        with state.cond:
            if self._released:
                raise RuntimeError("wait group handle already released")
            state.count += 1
        return WaitGroup._attach(state)

    def done(self) -> None:
        """Release this handle; further calls have no effect."""
        state = self._state
        with state.cond:
            if self._released:
                return
            self._released = True
            state.count -= 1
            if state.count:
                return
            state.cond.notify_all()
            waiters, state.waiters = state.waiters, []
        for fut in waiters:
            try:
                fut.get_loop().call_soon_threadsafe(_resolve, fut)
            except RuntimeError:
                pass

    def workers(self) -> int:
        """Number of live handles other than this one."""
        with self._state.cond:
            count = self._state.count
            return count if self._released else count - 1

    def wait(self, timeout: float | None = None) -> bool:
        """Release this handle and block until all handles are released.

        Returns False if the timeout expired first.
        """
        self.done()
        state = self._state
        with state.cond:
            return state.cond.wait_for(lambda: state.count == 0, timeout)

    async def wait_async(self) -> None:
        """Release this handle and wait until all handles are released."""
        self.done()
        state = self._state
        loop = asyncio.get_running_loop()
        with state.cond:
            if state.count == 0:
                return
            fut = loop.create_future()
            state.waiters.append(fut)
        await fut

    def __enter__(self) -> WaitGroup:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.done()