#!/usr/bin/env python3
"""
cli.py

Command-line interface: runs a Python script under the sampling profiler
and prints where the main thread spent its time.
"""
import logging
import os
import runpy
import sys

import click
from rich import print

from stack_profiler.errors import ConfigurationError
from stack_profiler.exporters import speedscope
from stack_profiler.exporters import view_flame
from stack_profiler.profiler import DEFAULT_GROUPS, DEFAULT_SOFT_COLLAPSE, Profiler
from stack_profiler.render import DEFAULT_LEFT_PANE_WIDTH, TimeFormat
from stack_profiler.sampler import DEFAULT_INTERVAL_MS


def parse_groups(groups):
    """Turn `LABEL=PATTERN[,PATTERN]` options into an ordered label -> patterns dict."""
    parsed = {}
    for entry in groups:
        label, sep, patterns = entry.partition("=")
        if not sep or not label.strip() or not patterns.strip():
            raise click.BadParameter(f"expected LABEL=PATTERN[,PATTERN], got {entry!r}", param_hint="--group")
        parsed.setdefault(label.strip(), []).extend(p.strip() for p in patterns.split(","))
    return parsed


@click.command(context_settings={"allow_interspersed_args": False})
@click.option("--interval-ms", type=click.IntRange(min=1), default=DEFAULT_INTERVAL_MS, show_default=True,
              envvar="STACK_PROFILER_INTERVAL_MS", help="Sampling period in milliseconds")
@click.option("--prune-top", is_flag=True, help="Hide the call path prefix shared by every sample")
@click.option("--soft-collapse", multiple=True, metavar="PATTERN",
              help="Fold subtrees made only of matching frames (repeatable)")
@click.option("--no-default-collapse", is_flag=True, help="Do not soft-collapse standard library plumbing")
@click.option("--hard-collapse", multiple=True, metavar="PATTERN",
              help="Always fold matching frames (repeatable)")
@click.option("--group", "groups", multiple=True, metavar="LABEL=PATTERN[,PATTERN]",
              help="Report the time spent in a group of frames (repeatable, replaces the default groups)")
@click.option("--min-percent", type=click.FloatRange(0, 100), default=0,
              help="Fold nodes below this share of the total time")
@click.option("--no-sort", is_flag=True, help="Keep calls in the order they were first seen")
@click.option("--time-format", type=click.Choice([f.value for f in TimeFormat]), default=TimeFormat.PERCENTAGE.value,
              show_default=True)
@click.option("--color/--no-color", default=False, envvar="STACK_PROFILER_COLOR", help="Colorize the report")
@click.option("--width", type=click.IntRange(min=0), default=DEFAULT_LEFT_PANE_WIDTH, show_default=True,
              help="Width of the left pane before the source locations")
@click.option("--folded", type=click.Path(dir_okay=False, writable=True),
              help="Also write folded stacks (Speedscope/FlameGraph) to this file")
@click.option("--tree", "rich_tree", is_flag=True, help="Show an interactive-style tree instead of the text report")
@click.option("-v", "--verbose", is_flag=True, help="Log sampler activity")
@click.argument("script", type=click.Path(exists=True, dir_okay=False))
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def main(interval_ms, prune_top, soft_collapse, no_default_collapse, hard_collapse, groups, min_percent,
         no_sort, time_format, color, width, folded, rich_tree, verbose, script, args):
    """
    Run SCRIPT with ARGS under the sampling profiler.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    soft = tuple(soft_collapse) if no_default_collapse else DEFAULT_SOFT_COLLAPSE + tuple(soft_collapse)
    try:
        profiler = Profiler(
            interval_ms=interval_ms,
            prune_top=prune_top,
            soft_collapse=soft,
            hard_collapse=hard_collapse,
            groups=parse_groups(groups) if groups else DEFAULT_GROUPS,
            min_percent=min_percent,
            sort=not no_sort,
            time_format=time_format,
            colored=color,
            left_pane_width=width,
            dump=not rich_tree,
        )
    except ConfigurationError as e:
        raise click.UsageError(str(e))

    exit_code = 0
    saved_argv, saved_path = sys.argv, sys.path[:]
    sys.argv = [script, *args]
    # like `python script.py`, modules next to the script are importable
    sys.path.insert(0, os.path.dirname(os.path.abspath(script)))
    profiler.start()
    try:
        runpy.run_path(script, run_name="__main__")
    except SystemExit as e:
        exit_code = e.code
    finally:
        report = profiler.stop()
        sys.argv = saved_argv
        sys.path[:] = saved_path

    if rich_tree:
        print(view_flame.build_rich_tree(report.tree, title=script))
        click.echo(report.totals_line)
    if folded:
        count = speedscope.write_folded(report.samples, folded)
        click.echo(f"Wrote {count} folded stacks to {folded}", err=True)
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
