"""
Cooperative Scheduling

Single-threaded timer and idle-callback scheduling shared by the sampler,
the aggregator and the transition engine. All times are milliseconds.

Two schedulers are provided:

- ``AsyncioScheduler`` runs callbacks on an asyncio event loop.
- ``ManualScheduler`` keeps a virtual clock that only moves when
  ``advance()`` is called; used for deterministic replay and tests.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from concurrent.futures import Executor
from dataclasses import dataclass
from heapq import heappop, heappush
from typing import Any, Callable, Dict, List, Optional, Tuple

from qualityloop.utils.logging_config import get_logger

logger = get_logger(__name__)

TaskCallback = Callable[[], None]


class Scheduler(ABC):
    """Timer, idle-callback and worker-offload interface."""

    @abstractmethod
    def now(self) -> float:
        """Current time in milliseconds."""
        raise NotImplementedError

    @abstractmethod
    def call_later(self, delay_ms: float, callback: TaskCallback) -> int:
        """Schedule a one-shot callback; returns a handle for ``cancel``."""
        raise NotImplementedError

    @abstractmethod
    def call_when_idle(self, callback: TaskCallback, timeout_ms: Optional[float] = None) -> int:
        """
        Schedule a callback for when the loop has no other ready work.

        Args:
            callback: Callback to run
            timeout_ms: Upper bound on how long the callback may be deferred

        Returns:
            Handle for ``cancel``
        """
        raise NotImplementedError

    @abstractmethod
    def cancel(self, handle: int) -> None:
        """Cancel a scheduled callback if it is still pending."""
        raise NotImplementedError

    def run_in_worker(
        self,
        func: Callable[..., Any],
        args: Tuple[Any, ...],
        on_done: Callable[[Any, Optional[BaseException]], None],
        executor: Optional[Executor] = None,
    ) -> bool:
        """
        Run ``func(*args)`` off the loop and deliver the outcome on the loop.

        The default implementation has no worker and runs synchronously.

        Returns:
            True if the call was handed to a worker, False if it already ran inline
        """
        try:
            result = func(*args)
        except Exception as exc:
            on_done(None, exc)
        else:
            on_done(result, None)
        return False


class AsyncioScheduler(Scheduler):
    """Scheduler backed by an asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        Initialize scheduler.

        Args:
            loop: Event loop to schedule on (default: the running loop)
        """
        self._loop = loop or asyncio.get_running_loop()
        self._next_handle = 1
        self._handles: Dict[int, List[asyncio.Handle]] = {}

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def now(self) -> float:
        return self._loop.time() * 1000.0

    def call_later(self, delay_ms: float, callback: TaskCallback) -> int:
        handle_id = self._allocate()
        timer = self._loop.call_later(max(0.0, delay_ms) / 1000.0, self._fire, handle_id, callback)
        self._handles[handle_id] = [timer]
        return handle_id

    def call_when_idle(self, callback: TaskCallback, timeout_ms: Optional[float] = None) -> int:
        # asyncio has no idle hook; call_soon runs after the I/O and callbacks
        # already queued for this iteration. The timeout timer only matters if
        # the soon-callback is starved, whichever fires first wins.
        handle_id = self._allocate()
        handles = [self._loop.call_soon(self._fire, handle_id, callback)]
        if timeout_ms is not None:
            handles.append(
                self._loop.call_later(max(0.0, timeout_ms) / 1000.0, self._fire, handle_id, callback)
            )
        self._handles[handle_id] = handles
        return handle_id

    def cancel(self, handle: int) -> None:
        for timer in self._handles.pop(handle, []):
            timer.cancel()

    def run_in_worker(
        self,
        func: Callable[..., Any],
        args: Tuple[Any, ...],
        on_done: Callable[[Any, Optional[BaseException]], None],
        executor: Optional[Executor] = None,
    ) -> bool:
        if executor is None:
            return super().run_in_worker(func, args, on_done)

        try:
            future = self._loop.run_in_executor(executor, func, *args)
        except RuntimeError as exc:
            # Executor already shut down; degrade to inline processing
            logger.warning(f"Worker unavailable, processing inline: {exc}")
            return super().run_in_worker(func, args, on_done)

        def _deliver(fut: "asyncio.Future[Any]") -> None:
            if fut.cancelled():
                on_done(None, asyncio.CancelledError())
                return
            exc = fut.exception()
            on_done(None if exc else fut.result(), exc)

        future.add_done_callback(_deliver)
        return True

    def _allocate(self) -> int:
        handle_id = self._next_handle
        self._next_handle += 1
        return handle_id

    def _fire(self, handle_id: int, callback: TaskCallback) -> None:
        handles = self._handles.pop(handle_id, None)
        if handles is None:
            return
        for timer in handles:
            timer.cancel()
        callback()


@dataclass
class _Task:
    handle: int
    due_ms: float
    callback: TaskCallback
    cancelled: bool = False


class ManualScheduler(Scheduler):
    """Virtual-time scheduler advanced explicitly by the caller."""

    def __init__(self, start_ms: float = 0.0):
        self._now_ms = start_ms
        self._next_handle = 1
        self._tasks: Dict[int, _Task] = {}
        self._queue: List[Tuple[float, int]] = []

    def now(self) -> float:
        return self._now_ms

    @property
    def pending_count(self) -> int:
        """Number of callbacks still waiting to run."""
        return sum(1 for task in self._tasks.values() if not task.cancelled)

    def call_later(self, delay_ms: float, callback: TaskCallback) -> int:
        return self._schedule(self._now_ms + max(0.0, delay_ms), callback)

    def call_when_idle(self, callback: TaskCallback, timeout_ms: Optional[float] = None) -> int:
        # Virtual time has no competing work, so idle means "next turn"
        return self._schedule(self._now_ms, callback)

    def cancel(self, handle: int) -> None:
        task = self._tasks.get(handle)
        if task is not None:
            task.cancelled = True

    def advance(self, delta_ms: float) -> int:
        """
        Move the clock forward, running every callback that becomes due.

        Callbacks run at their own due time, so a callback that schedules
        another one inside the same span sees the right ``now()``.

        Returns:
            Number of callbacks executed
        """
        if delta_ms < 0:
            raise ValueError("delta_ms must be >= 0")
        target = self._now_ms + delta_ms
        executed = 0
        while self._queue and self._queue[0][0] <= target:
            due_ms, handle = heappop(self._queue)
            task = self._tasks.pop(handle, None)
            if task is None or task.cancelled:
                continue
            self._now_ms = max(self._now_ms, due_ms)
            task.callback()
            executed += 1
        self._now_ms = target
        return executed

    def run_pending(self) -> int:
        """Run callbacks that are already due without moving the clock."""
        return self.advance(0.0)

    def _schedule(self, due_ms: float, callback: TaskCallback) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self._tasks[handle] = _Task(handle=handle, due_ms=due_ms, callback=callback)
        heappush(self._queue, (due_ms, handle))
        return handle


def perf_counter_ms() -> float:
    """High resolution wall clock in milliseconds, for overhead accounting."""
    return time.perf_counter() * 1000.0


__all__ = [
    'Scheduler',
    'AsyncioScheduler',
    'ManualScheduler',
    'TaskCallback',
    'perf_counter_ms',
]
