"""
Exceptions raised by the profiler.
"""


class ProfilerError(Exception):
    """Base class for profiler errors."""


class UsageError(ProfilerError, RuntimeError):
    """The profiler API was called out of order (e.g. stop before start)."""


class ConfigurationError(ProfilerError, ValueError):
    """A setting is invalid. Raised before any sampling begins."""
