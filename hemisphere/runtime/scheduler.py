"""
Clock and task scheduling for the session runtime.

The outbox never touches ``time`` or ``asyncio`` directly. It asks a
scheduler for the current time, for delayed callbacks (retry backoff) and for
fire-and-forget tasks (flushes). ``AsyncioScheduler`` runs against the real
event loop; ``ManualScheduler`` keeps a virtual clock that tests advance by
hand so backoff can be exercised without sleeping.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from typing import Any, Callable, Coroutine

from loguru import logger


def now_ms() -> int:
    """Wall-clock time in unix milliseconds."""
    return int(time.time() * 1000)


class Scheduler:
    """Base scheduler: task tracking shared by both implementations."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def now_ms(self) -> int:
        raise NotImplementedError

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> Any:
        raise NotImplementedError

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any] | None:
        """
        Run ``coro`` in the background on the running loop.

        Returns None (and closes the coroutine) when no loop is running; the
        caller's work stays queued for the next trigger.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop - background task deferred")
            return None

        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Background task failed: {}", exc)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait until every spawned task, including ones they spawn, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class AsyncioScheduler(Scheduler):
    """
    Scheduler backed by the running asyncio loop and the wall clock.

    Loop timers run on a monotonic clock while ``now_ms`` is wall time. A
    timer therefore re-checks ``now_ms`` when it fires and waits out the
    remainder if the wall clock has stepped back since it was armed.
    """

    def now_ms(self) -> int:
        return now_ms()

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> asyncio.TimerHandle | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop - timer of {}ms dropped", delay_ms)
            return None

        due = self.now_ms() + max(delay_ms, 0)

        def fire() -> None:
            remaining = due - self.now_ms()
            if remaining > 0:
                loop.call_later(remaining / 1000.0, fire)
                return
            callback()

        return loop.call_later(max(delay_ms, 0) / 1000.0, fire)


class ManualScheduler(Scheduler):
    """
    Virtual-clock scheduler.

    Timers fire only when ``advance`` moves the clock past their due time,
    in due-time order (ties in registration order).
    """

    def __init__(self, start_ms: int = 0) -> None:
        super().__init__()
        self._now = start_ms
        self._timers: list[tuple[int, int, Callable[[], None]]] = []
        self._seq = itertools.count()

    def now_ms(self) -> int:
        return self._now

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> int:
        seq = next(self._seq)
        heapq.heappush(self._timers, (self._now + max(delay_ms, 0), seq, callback))
        return seq

    @property
    def timer_delays(self) -> list[int]:
        """Remaining delay of each scheduled timer, soonest first."""
        return sorted(due - self._now for due, _, _ in self._timers)

    def advance(self, delta_ms: int) -> int:
        """Move the clock forward, firing due timers. Returns how many fired."""
        target = self._now + delta_ms
        fired = 0
        while self._timers and self._timers[0][0] <= target:
            due, _, callback = heapq.heappop(self._timers)
            self._now = due
            callback()
            fired += 1
        self._now = target
        return fired
