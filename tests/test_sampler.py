"""
Unit tests for StackSampler.
"""

import threading
import time

import pytest

from stack_profiler import sampler as sampler_module
from stack_profiler.errors import ConfigurationError, UsageError
from stack_profiler.frames import Frame
from stack_profiler.sampler import SamplerState, StackSampler
from stack_profiler.scheduler import Scheduler

INTERVAL_MS = 20
# one sampling interval plus room for a busy test machine
TOLERANCE_MS = INTERVAL_MS + 15


class ManualTask:
    def __init__(self):
        self.cancelled = False

    def cancel(self, timeout=None):
        self.cancelled = True
        return True


class ManualScheduler:
    """Never fires; the test calls the tick itself."""

    def __init__(self):
        self.task = ManualTask()
        self.fn = None

    def schedule_with_fixed_delay(self, fn, period, name=None):
        self.fn = fn
        self.period = period
        return self.task


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms / 1000.0


def helper():
    time.sleep(0.1)


def main_loop():
    helper()


class TestSamplerLifecycle:
    """Test the idle -> running -> stopped state machine."""

    def test_stop_before_start(self):
        with pytest.raises(UsageError):
            StackSampler().stop()

    def test_start_twice(self):
        sampler = StackSampler(scheduler=ManualScheduler())
        sampler.start()
        with pytest.raises(UsageError):
            sampler.start()
        sampler.stop()

    def test_restart_after_stop(self):
        sampler = StackSampler(scheduler=ManualScheduler())
        sampler.start()
        sampler.stop()
        assert sampler.state is SamplerState.STOPPED
        with pytest.raises(UsageError):
            sampler.start()
        with pytest.raises(UsageError):
            sampler.stop()

    def test_build_tree_while_running(self):
        sampler = StackSampler(scheduler=ManualScheduler())
        with pytest.raises(UsageError):
            sampler.build_tree()
        sampler.start()
        with pytest.raises(UsageError):
            sampler.build_tree()
        sampler.stop()
        assert sampler.build_tree().is_empty()

    def test_schedules_at_interval(self):
        scheduler = ManualScheduler()
        sampler = StackSampler(interval_ms=40, scheduler=scheduler)
        sampler.start()
        assert scheduler.period == pytest.approx(0.04)
        assert sampler.thread_id == threading.get_ident()
        sampler.stop()
        assert scheduler.task.cancelled

    @pytest.mark.parametrize("interval", [0, -20, 1.5, "20", True])
    def test_invalid_interval(self, interval):
        with pytest.raises(ConfigurationError):
            StackSampler(interval_ms=interval)


class TestSamplerTicks:
    """Test what a single tick records."""

    def test_durations_and_empty_ticks(self, monkeypatch):
        """An empty stack records nothing and does not move the clock."""
        stack = (Frame.from_name("m.leaf"), Frame.from_name("m.main"))
        captures = iter([stack, (), stack])
        monkeypatch.setattr(sampler_module, "capture_thread_stack", lambda thread_id: next(captures))
        clock = FakeClock()
        scheduler = ManualScheduler()
        sampler = StackSampler(scheduler=scheduler, clock=clock)
        sampler.start()
        clock.advance(20)
        scheduler.fn()
        clock.advance(20)
        scheduler.fn()
        clock.advance(20)
        scheduler.fn()
        clock.advance(5)
        samples = sampler.stop()

        assert [s.duration_ms for s in samples] == [pytest.approx(20), pytest.approx(40)]
        assert samples[0].frames == stack
        # durations never add up to more than the session
        assert sum(s.duration_ms for s in samples) <= sampler.elapsed_ms
        assert sampler.elapsed_ms == pytest.approx(65)

    def test_stop_returns_snapshot(self, monkeypatch):
        monkeypatch.setattr(sampler_module, "capture_thread_stack", lambda thread_id: (Frame.from_name("m.main"),))
        scheduler = ManualScheduler()
        sampler = StackSampler(scheduler=scheduler)
        sampler.start()
        scheduler.fn()
        samples = sampler.stop()
        # a late tick must not change what stop() returned
        scheduler.fn()
        assert len(samples) == 1
        assert isinstance(samples, tuple)
        assert sampler.build_tree().sample_count == 1


class TestStopTimeout:
    """Test stop() against a tick that does not finish in time."""

    def test_stop_gives_up_on_a_slow_tick(self, monkeypatch, caplog):
        entered = threading.Event()
        release = threading.Event()

        def slow_capture(thread_id):
            entered.set()
            release.wait(2.0)
            return (Frame.from_name("m.main"),)

        monkeypatch.setattr(sampler_module, "capture_thread_stack", slow_capture)
        scheduler = Scheduler(max_workers=1, name="slow-tick")
        try:
            sampler = StackSampler(interval_ms=5, scheduler=scheduler, stop_timeout=0.05)
            sampler.start()
            assert entered.wait(1.0)

            began = time.monotonic()
            samples = sampler.stop()
            assert time.monotonic() - began < 0.5
            assert samples == ()
            assert "did not finish within 0.05s" in caplog.text

            # the tick completes after stop() returned
            release.set()
            deadline = time.monotonic() + 2.0
            while not sampler.samples and time.monotonic() < deadline:
                time.sleep(0.005)
            assert len(sampler.samples) == 1
            assert sampler.build_tree().sample_count == 0
            assert sampler.build_tree().roots == ()
        finally:
            release.set()
            scheduler.shutdown()


class TestSamplerEndToEnd:
    """Sample a real thread."""

    def test_sleeping_thread(self):
        sampler = StackSampler(interval_ms=INTERVAL_MS)

        def worker():
            sampler.start()
            main_loop()

        thread = threading.Thread(target=worker, name="worker")
        thread.start()
        thread.join()
        sampler.stop()
        tree = sampler.build_tree()

        assert sampler.thread_name == "worker"
        main = next(n for _, n in tree.walk() if n.frame.function == "main_loop")
        assert [c.frame.function for c in main.children] == ["helper"]
        helper_node = main.children[0]
        assert helper_node.children == ()
        assert helper_node.frame.module == __name__
        assert abs(helper_node.total_time_ms - 100) <= TOLERANCE_MS

    def test_thread_that_already_finished(self):
        """Sampling a dead thread produces no samples."""
        sampler = StackSampler(interval_ms=5)
        thread = threading.Thread(target=sampler.start)
        thread.start()
        thread.join()
        time.sleep(0.05)
        assert sampler.stop() == ()
        assert sampler.build_tree().roots == ()
