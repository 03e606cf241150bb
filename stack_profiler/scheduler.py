"""
A small shared pool that runs periodic tasks with a fixed delay.

One daemon timer thread keeps a heap of deadlines and hands due ticks to a
bounded ThreadPoolExecutor. A task's next tick is only queued once its
previous tick has returned, so ticks of the same task never overlap and each
one happens-before the next. Independent tasks run concurrently on the pool.
"""

import heapq
import itertools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4

# globals
_LOCK = threading.Lock()
_scheduler = None


class PeriodicTask:
    """Handle returned by `Scheduler.schedule_with_fixed_delay`."""

    def __init__(self, scheduler: "Scheduler", fn: Callable[[], None], period: float, name: str = None):
        self._scheduler = scheduler
        self._fn = fn
        self.period = period
        self.name = name or getattr(fn, "__qualname__", repr(fn))
        self._lock = threading.Lock()
        self._cancelled = False
        self._idle = threading.Event()
        self._idle.set()
        self.runs = 0
        self.failures = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _dispatch(self):
        with self._lock:
            if self._cancelled:
                return
            self._idle.clear()
        try:
            self._scheduler._executor.submit(self._run)
        except RuntimeError:
            # executor shut down (interpreter exit)
            logger.warning("Could not run %s, scheduler is shut down", self.name)
            with self._lock:
                self._cancelled = True
                self._idle.set()

    def _run(self):
        try:
            self._fn()
        except Exception:
            self.failures += 1
            logger.exception("Periodic task %s failed, will run again", self.name)
        finally:
            self.runs += 1
            with self._lock:
                self._idle.set()
                cancelled = self._cancelled
        if not cancelled:
            self._scheduler._enqueue(self, time.monotonic() + self.period)

    def cancel(self, timeout: Optional[float] = None) -> bool:
        """
        Prevent further ticks and wait for an in-flight tick to return.
        Returns False if the in-flight tick was still running after `timeout`.
        """
        with self._lock:
            self._cancelled = True
        return self._idle.wait(timeout)


class Scheduler:
    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS, name: str = "stack-profiler"):
        if not isinstance(max_workers, int) or max_workers < 1:
            raise ConfigurationError(f"max_workers must be a positive integer, got {max_workers!r}")
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._queue = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._timer_thread = None
        self._shutdown = False

    def schedule_with_fixed_delay(self, fn: Callable[[], None], period: float, name: str = None) -> PeriodicTask:
        """Run `fn` every `period` seconds, measured from the end of the previous run."""
        if period <= 0:
            raise ConfigurationError(f"period must be positive, got {period!r}")
        task = PeriodicTask(self, fn, period, name)
        self._enqueue(task, time.monotonic() + period)
        return task

    def _enqueue(self, task: PeriodicTask, deadline: float):
        with self._cond:
            if self._shutdown:
                return
            heapq.heappush(self._queue, (deadline, next(self._seq), task))
            if self._timer_thread is None:
                self._timer_thread = threading.Thread(
                    target=self._run_timer, name=f"{self.name}-timer", daemon=True
                )
                self._timer_thread.start()
            self._cond.notify()

    def _run_timer(self):
        while True:
            with self._cond:
                while not self._queue and not self._shutdown:
                    self._cond.wait()
                if self._shutdown:
                    return
                deadline, _, task = self._queue[0]
                delay = deadline - time.monotonic()
                if delay > 0:
                    self._cond.wait(delay)
                    continue
                heapq.heappop(self._queue)
            task._dispatch()

    def shutdown(self, wait: bool = True):
        with self._cond:
            self._shutdown = True
            self._queue.clear()
            self._cond.notify_all()
        self._executor.shutdown(wait=wait)


def get_scheduler() -> Scheduler:
    """The process-wide scheduler shared by every sampler."""
    global _scheduler
    with _LOCK:
        if _scheduler is None:
            _scheduler = Scheduler()
        return _scheduler
