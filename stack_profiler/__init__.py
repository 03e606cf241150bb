"""
Embedded sampling profiler.

Samples the call stack of the thread being profiled at a fixed interval,
merges the samples into a call tree and prints where the time went:

    from stack_profiler import profile_block

    with profile_block(prune_top=True):
        do_work()
"""

from .call_tree import CallTree, Node, build_call_tree
from .errors import ConfigurationError, ProfilerError, UsageError
from .frames import Frame, Sample
from .globs import Glob, to_glob
from .profiler import Profiler, Report, profile, profile_block
from .render import TimeFormat, format_group_totals, render_tree
from .sampler import SamplerState, StackSampler

__all__ = [
    "CallTree",
    "ConfigurationError",
    "Frame",
    "Glob",
    "Node",
    "Profiler",
    "ProfilerError",
    "Report",
    "Sample",
    "SamplerState",
    "StackSampler",
    "TimeFormat",
    "UsageError",
    "build_call_tree",
    "format_group_totals",
    "profile",
    "profile_block",
    "render_tree",
    "to_glob",
]
