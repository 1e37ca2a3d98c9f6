"""
Cancellable scheduling primitives.

Every delayed or periodic action in the real-time layer (reconnect backoff,
heartbeat, typing expiry) is created through a Scheduler and returns a
TimerHandle. Teardown cancels handles; a cancelled handle never fires.

AsyncioScheduler is the production implementation. Tests substitute a
scheduler with a manual clock.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Coroutine, Protocol


TimerCallback = Callable[[], None]


class TimerHandle(Protocol):
    """Handle returned by every scheduling call."""

    def cancel(self) -> None: ...

    @property
    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    """Clock + timers + task spawning for one session."""

    def now_ms(self) -> int: ...

    def call_later(self, delay_ms: int, callback: TimerCallback) -> TimerHandle: ...

    def call_every(self, interval_ms: int, callback: TimerCallback) -> TimerHandle: ...

    def spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]: ...

    def cancel_all(self) -> None: ...


# ---------------------------------------------------------------------
# asyncio implementation
# ---------------------------------------------------------------------

class _LoopTimer:
    """
    TimerHandle backed by loop.call_later.

    Periodic timers re-arm themselves after each tick until cancelled.
    """

    def __init__(
        self,
        *,
        owner: AsyncioScheduler,
        delay_s: float,
        callback: TimerCallback,
        repeat: bool,
    ) -> None:
        self._owner = owner
        self._delay_s = delay_s
        self._callback = callback
        self._repeat = repeat
        self._cancelled = False
        self._handle: asyncio.TimerHandle | None = None
        self._arm()

    def _arm(self) -> None:
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._delay_s, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        if self._repeat:
            self._arm()
        else:
            self._owner._forget(self)
        self._callback()

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._owner._forget(self)

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler:
    """Scheduler bound to the running event loop."""

    def __init__(self) -> None:
        self._timers: set[_LoopTimer] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    def now_ms(self) -> int:
        return time.monotonic_ns() // 1_000_000

    def call_later(self, delay_ms: int, callback: TimerCallback) -> TimerHandle:
        timer = _LoopTimer(owner=self, delay_s=delay_ms / 1000.0, callback=callback, repeat=False)
        self._timers.add(timer)
        return timer

    def call_every(self, interval_ms: int, callback: TimerCallback) -> TimerHandle:
        timer = _LoopTimer(owner=self, delay_s=interval_ms / 1000.0, callback=callback, repeat=True)
        self._timers.add(timer)
        return timer

    def spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def cancel_all(self) -> None:
        """Cancel every pending timer and task. Used on session teardown."""
        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def _forget(self, timer: _LoopTimer) -> None:
        self._timers.discard(timer)
