"""
Profile a region of code on the current thread.

Features:
- `Profiler` with `start()` / `stop()`, or `Profiler.profile(fn, ...)`
- `@profile` decorator for whole functions
- `profile_block` context manager for code blocks
- the report is echoed when the session ends and returned as a `Report`
- set STACK_PROFILER_DISABLE to turn `@profile` and `profile_block` into no-ops
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from functools import wraps
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

import click

from .call_tree import CallTree
from .errors import ConfigurationError, UsageError
from .frames import Sample
from .globs import Glob
from .render import DEFAULT_LEFT_PANE_WIDTH, TimeFormat, format_group_totals, render_tree
from .sampler import DEFAULT_INTERVAL_MS, StackSampler, validate_interval
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

DISABLE_ENV_VAR = "STACK_PROFILER_DISABLE"

# framework plumbing that is only interesting when it calls back into user code
DEFAULT_SOFT_COLLAPSE = (
    "threading.*",
    "concurrent.*",
    "asyncio.*",
    "importlib.*",
    "runpy.*",
    "selectors.*",
    "socket.*",
    "ssl.*",
    "http.*",
    "urllib.*",
    "json.*",
    "logging.*",
    "re.*",
)

DEFAULT_GROUPS = {
    "DB": ["sqlite3.*", "sqlalchemy.*", "psycopg2.*", "pymysql.*"],
    "IO/Net": ["socket.*", "ssl.*", "http.*", "urllib.*", "urllib3.*", "requests.*", "httpx.*"],
}

RULE = "=" * 68


@dataclass(frozen=True)
class Report:
    """Outcome of one profiling session."""

    raw_tree: CallTree
    tree: CallTree
    group_totals: Dict[str, float]
    lines: Tuple[str, ...]
    thread_name: str
    samples: Tuple[Sample, ...] = ()

    @property
    def total_time_ms(self) -> float:
        return self.tree.total_time_ms

    @property
    def sample_count(self) -> int:
        return self.tree.sample_count

    @property
    def header(self) -> str:
        return f"Result of profiling of {self.thread_name}: {round(self.total_time_ms)}ms"

    @property
    def totals_line(self) -> str:
        return format_group_totals(self.group_totals, self.total_time_ms)

    @property
    def text(self) -> str:
        return "\n".join([RULE, self.header, RULE, *self.lines, RULE, self.totals_line])


def _disabled() -> bool:
    return DISABLE_ENV_VAR in os.environ


class Profiler:
    """
    Samples the thread that calls `start()` until `stop()`, then builds,
    transforms and renders the call tree. A profiler runs one session at a
    time but can be started again after it was stopped.
    """

    def __init__(
        self,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        prune_top: bool = False,
        soft_collapse: Sequence[str] = DEFAULT_SOFT_COLLAPSE,
        hard_collapse: Sequence[str] = (),
        groups: Mapping[str, Sequence[str]] = None,
        min_percent: float = 0,
        sort: bool = True,
        time_format: TimeFormat = TimeFormat.PERCENTAGE,
        colored: bool = False,
        left_pane_width: int = DEFAULT_LEFT_PANE_WIDTH,
        dump: bool = True,
        min_report_duration_ms: float = 0,
        stop_timeout: float = 1.0,
        scheduler: Scheduler = None,
    ):
        self.interval_ms = validate_interval(interval_ms)
        self.prune_top = prune_top
        self.soft_collapse = Glob(soft_collapse)
        self.hard_collapse = Glob(hard_collapse)
        groups = DEFAULT_GROUPS if groups is None else groups
        self.groups = {label: Glob(patterns) for label, patterns in groups.items()}
        if not 0 <= min_percent <= 100:
            raise ConfigurationError(f"min_percent must be between 0 and 100, got {min_percent}")
        self.min_percent = min_percent
        self.sort = sort
        try:
            self.time_format = TimeFormat(time_format)
        except ValueError:
            raise ConfigurationError(f"Unknown time format {time_format!r}") from None
        self.colored = colored
        if isinstance(left_pane_width, bool) or not isinstance(left_pane_width, int) or left_pane_width < 0:
            raise ConfigurationError(f"left_pane_width must be a non-negative integer, got {left_pane_width!r}")
        self.left_pane_width = left_pane_width
        self.dump = dump
        self.min_report_duration_ms = min_report_duration_ms
        if stop_timeout <= 0:
            raise ConfigurationError(f"stop_timeout must be positive, got {stop_timeout}")
        self.stop_timeout = stop_timeout
        self._scheduler = scheduler
        self._sampler: Optional[StackSampler] = None
        self.last_report: Optional[Report] = None

    @property
    def running(self) -> bool:
        return self._sampler is not None

    def start(self) -> None:
        if self._sampler is not None:
            raise UsageError("Profiler is already running")
        sampler = StackSampler(self.interval_ms, scheduler=self._scheduler, stop_timeout=self.stop_timeout)
        sampler.start()
        self._sampler = sampler

    def stop(self) -> Report:
        """Stop sampling and produce the report; echoes it if `dump` is set."""
        if self._sampler is None:
            raise UsageError("Profiler was not started")
        sampler, self._sampler = self._sampler, None
        samples = sampler.stop()
        report = self.report(sampler.build_tree(), sampler.thread_name, samples)
        self.last_report = report
        logger.debug("Profiled %s: %d samples in %.0fms", report.thread_name, len(samples), report.total_time_ms)
        if self.dump and report.total_time_ms >= self.min_report_duration_ms:
            click.echo(report.text, color=self.colored)
        return report

    def transform(self, tree: CallTree) -> CallTree:
        """Apply the configured prune, collapse and sort steps."""
        if self.prune_top:
            tree = tree.pruned()
        tree = tree.collapsed(soft=self.soft_collapse, hard=self.hard_collapse)
        tree = tree.collapsed_below(self.min_percent)
        if self.sort:
            tree = tree.sorted_longest_first()
        return tree

    def report(self, raw_tree: CallTree, thread_name: str = "<unknown>", samples: Tuple[Sample, ...] = ()) -> Report:
        tree = self.transform(raw_tree)
        lines = render_tree(tree, self.colored, self.left_pane_width, self.time_format)
        return Report(
            raw_tree=raw_tree,
            tree=tree,
            group_totals=tree.group_totals(self.groups),
            lines=tuple(lines),
            thread_name=thread_name,
            samples=tuple(samples),
        )

    def profile(self, fn: Callable, *args, **kwargs):
        """Run `fn` under the profiler and return its result."""
        self.start()
        try:
            return fn(*args, **kwargs)
        finally:
            self.stop()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False


def profile(func=None, **settings):
    """Decorator: profile every call of the function. Usable bare or with settings."""

    def decorate(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if _disabled():
                return fn(*args, **kwargs)
            return Profiler(**settings).profile(fn, *args, **kwargs)

        return wrapper

    if func is not None:
        return decorate(func)
    return decorate


@contextmanager
def profile_block(**settings):
    """Context manager: profile a code block. Yields the Profiler, or None when disabled."""
    if _disabled():
        yield None
        return
    profiler = Profiler(**settings)
    profiler.start()
    try:
        yield profiler
    finally:
        profiler.stop()
