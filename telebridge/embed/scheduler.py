"""Timer abstraction used for retries, cooldowns and readiness checks.

``AsyncioScheduler`` runs callbacks on the running event loop.
``ManualScheduler`` keeps a virtual clock that only moves when
:meth:`ManualScheduler.advance` is called, so delay sequences can be
asserted without real waits.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from typing import Callable


class CancelToken:
    """Handle returned by :meth:`Scheduler.schedule`."""

    def __init__(self, cancel: Callable[[], None] | None = None) -> None:
        self._cancel = cancel
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._cancel is not None:
            self._cancel()


class Scheduler(ABC):
    @abstractmethod
    def schedule(self, delay: float, callback: Callable[[], None]) -> CancelToken:
        """Run *callback* once after *delay* seconds."""

    @abstractmethod
    def now(self) -> float:
        """Current time on this scheduler's clock, in seconds."""


class AsyncioScheduler(Scheduler):
    """Schedules callbacks with ``loop.call_later`` on the running loop."""

    def schedule(self, delay: float, callback: Callable[[], None]) -> CancelToken:
        handle = asyncio.get_running_loop().call_later(max(delay, 0.0), callback)
        return CancelToken(handle.cancel)

    def now(self) -> float:
        return asyncio.get_running_loop().time()


class ManualScheduler(Scheduler):
    """Virtual-time scheduler.

    Callbacks run synchronously inside :meth:`advance`, in due-time order,
    including callbacks scheduled by other callbacks within the window.
    """

    def __init__(self) -> None:
        self._now = 0.0
        self._seq = itertools.count()
        self._queue: list[tuple[float, int, Callable[[], None], CancelToken]] = []
        self.history: list[float] = []

    def schedule(self, delay: float, callback: Callable[[], None]) -> CancelToken:
        token = CancelToken()
        delay = max(delay, 0.0)
        self.history.append(delay)
        heapq.heappush(self._queue, (self._now + delay, next(self._seq), callback, token))
        return token

    def now(self) -> float:
        return self._now

    @property
    def pending(self) -> int:
        return sum(1 for *_, token in self._queue if not token.cancelled)

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running every callback that falls due."""
        target = self._now + seconds
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, callback, token = heapq.heappop(self._queue)
            self._now = due
            if token.cancelled:
                continue
            callback()
            ran += 1
        self._now = target
        return ran
