r"""
Plain-text rendering of a call tree.

    \-main.Main.run(): total 100% / own 0%        at File "main.py", line 12
      +-main.Helper.load(): total 60% / own 60%   at File "main.py", line 30
      \-main.Helper.save(): total >40% / own >40% at File "main.py", line 41

A `>` before a time marks a node seen in a single sample only; the real time
could be anything up to one sampling interval more.

Colors are applied with rich styles and exported as ANSI escape sequences.
Column padding is computed on the plain text, so escapes never shift the
right-hand pane.
"""

import enum
from typing import List, Mapping

from rich.console import Console
from rich.text import Text

from .call_tree import CallTree, Node
from .errors import ConfigurationError

DEFAULT_LEFT_PANE_WIDTH = 80

MODULE_STYLE = "magenta"
FUNCTION_STYLE = "blue"
TOTAL_STYLE = "yellow"
OWN_STYLE = "green"


class TimeFormat(enum.Enum):
    MILLIS = "millis"
    PERCENTAGE = "percentage"

    def format(self, duration_ms: float, total_ms: float) -> str:
        if self is TimeFormat.MILLIS:
            return f"{round(duration_ms)}ms"
        if total_ms <= 0:
            return "0%"
        return f"{round(duration_ms * 100.0 / total_ms)}%"


def _low_confidence(node: Node) -> str:
    return ">" if node.occurrences <= 1 else ""


def node_text(node: Node, total_ms: float, time_format: TimeFormat, width: int) -> Text:
    """One row of the report, without the tree connectors."""
    text = Text()
    frame = node.frame
    module = frame.module.rpartition(".")[2]
    if module:
        text.append(module, style=MODULE_STYLE)
        text.append(".")
    text.append(f"{frame.function}()", style=FUNCTION_STYLE)
    text.append(": total ")
    text.append(_low_confidence(node) + time_format.format(node.total_time_ms, total_ms), style=TOTAL_STYLE)
    if not node.children or node.own_time_ms > 0:
        text.append(" / own ")
        text.append(_low_confidence(node) + time_format.format(node.own_time_ms, total_ms), style=OWN_STYLE)
    # right pane: location the IDE can jump to
    text.append(" " * max(width - text.cell_len, 0))
    text.append(" at ")
    text.append(frame.location)
    return text


def _to_ansi(console: Console, text: Text) -> str:
    with console.capture() as capture:
        console.print(text, end="", soft_wrap=True, highlight=False)
    return capture.get()


def render_tree(tree: CallTree, colored: bool = False, left_pane_width: int = DEFAULT_LEFT_PANE_WIDTH,
                time_format: TimeFormat = TimeFormat.PERCENTAGE) -> List[str]:
    """Render `tree` as lines of ASCII art. An empty tree renders no lines."""
    if isinstance(left_pane_width, bool) or not isinstance(left_pane_width, int) or left_pane_width < 0:
        raise ConfigurationError(f"left_pane_width must be a non-negative integer, got {left_pane_width!r}")
    time_format = TimeFormat(time_format)
    console = Console(force_terminal=True, color_system="standard", soft_wrap=True) if colored else None
    lines: List[str] = []

    def emit(node: Node, prefix: str, is_tail: bool, depth: int):
        text = node_text(node, tree.total_time_ms, time_format, left_pane_width - 2 * depth)
        row = _to_ansi(console, text) if colored else text.plain
        lines.append(prefix + ("\\-" if is_tail else "+-") + row)
        child_prefix = prefix + ("  " if is_tail else "| ")
        last = len(node.children) - 1
        for i, child in enumerate(node.children):
            emit(child, child_prefix, i == last, depth + 1)

    for root in tree.roots:
        emit(root, "", True, 0)
    return lines


def format_group_totals(totals: Mapping[str, float], total_time_ms: float) -> str:
    """`Total: 100ms [DB: 25ms (25%), IO/Net: 10ms (10%)]`; groups with no time are left out."""
    groups = ", ".join(
        f"{label}: {TimeFormat.MILLIS.format(duration, total_time_ms)} "
        f"({TimeFormat.PERCENTAGE.format(duration, total_time_ms)})"
        for label, duration in totals.items()
        if duration
    )
    return f"Total: {round(total_time_ms)}ms [{groups}]"
