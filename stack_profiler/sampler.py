"""
Periodic stack sampler for the thread that starts it.
"""

import enum
import logging
import threading
import time
from typing import Callable, List, Optional, Tuple

from .call_tree import CallTree, build_call_tree
from .errors import ConfigurationError, UsageError
from .frames import Sample, capture_thread_stack
from .scheduler import Scheduler, get_scheduler

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 20


class SamplerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


def validate_interval(interval_ms) -> int:
    if isinstance(interval_ms, bool) or not isinstance(interval_ms, int):
        raise ConfigurationError(f"interval_ms must be an integer, got {interval_ms!r}")
    if interval_ms <= 0:
        raise ConfigurationError(f"interval_ms must be positive, got {interval_ms}")
    return interval_ms


class StackSampler:
    """
    Samples the stack of the thread that called `start()` every `interval_ms`
    until `stop()`. One instance profiles one session; create a new one for
    the next session.
    """

    def __init__(self, interval_ms: int = DEFAULT_INTERVAL_MS, scheduler: Scheduler = None,
                 stop_timeout: float = 1.0, clock: Callable[[], float] = time.monotonic):
        self.interval_ms = validate_interval(interval_ms)
        self._scheduler = scheduler
        self.stop_timeout = stop_timeout
        self._clock = clock
        self.state = SamplerState.IDLE
        self.thread_id: Optional[int] = None
        self.thread_name: Optional[str] = None
        self._thread: Optional[threading.Thread] = None
        self._samples: List[Sample] = []
        self._task = None
        self._started_at = None
        self._stopped_at = None
        self._last_sample_at = None
        self._final_samples: Tuple[Sample, ...] = ()

    def start(self) -> None:
        if self.state is not SamplerState.IDLE:
            raise UsageError(f"Sampler is {self.state.value}, it can only be started once")
        current = self._thread = threading.current_thread()
        self.thread_id = current.ident
        self.thread_name = current.name
        self._started_at = self._last_sample_at = self._clock()
        self.state = SamplerState.RUNNING
        scheduler = self._scheduler or get_scheduler()
        self._task = scheduler.schedule_with_fixed_delay(
            self._tick, self.interval_ms / 1000.0, name=f"sampler of {self.thread_name}"
        )
        logger.debug("Sampling thread %s every %dms", self.thread_name, self.interval_ms)

    def _tick(self) -> None:
        # thread idents are reused once a thread exits
        if not self._thread.is_alive():
            return
        stack = capture_thread_stack(self.thread_id)
        if not stack:
            return
        now = self._clock()
        duration_ms = (now - self._last_sample_at) * 1000.0
        self._last_sample_at = now
        self._samples.append(Sample(stack, duration_ms, now))

    def stop(self) -> Tuple[Sample, ...]:
        """Cancel sampling and return every sample taken so far."""
        if self.state is SamplerState.IDLE:
            raise UsageError("Sampler was never started")
        if self.state is SamplerState.STOPPED:
            raise UsageError("Sampler is already stopped")
        self.state = SamplerState.STOPPED
        if not self._task.cancel(self.stop_timeout):
            logger.warning(
                "Sample in flight for %s did not finish within %gs", self.thread_name, self.stop_timeout
            )
        self._stopped_at = self._clock()
        # ticks that outlived the timeout must not leak into the result
        samples = self._final_samples = tuple(self._samples)
        logger.debug("Stopped sampling %s: %d samples", self.thread_name, len(samples))
        return samples

    @property
    def samples(self) -> Tuple[Sample, ...]:
        return tuple(self._samples)

    @property
    def elapsed_ms(self) -> float:
        """Wall-clock span of the session so far."""
        if self._started_at is None:
            return 0.0
        end = self._stopped_at if self._stopped_at is not None else self._clock()
        return (end - self._started_at) * 1000.0

    def build_tree(self) -> CallTree:
        if self.state is not SamplerState.STOPPED:
            raise UsageError(f"Cannot build a call tree while the sampler is {self.state.value}")
        return build_call_tree(self._final_samples, self.elapsed_ms)

    def __repr__(self):
        return f"StackSampler({self.thread_name}, interval_ms={self.interval_ms}, state={self.state.value})"
