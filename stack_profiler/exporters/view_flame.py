"""
view_flame.py

Renders a call tree as a collapsible Rich tree with human-friendly time
units, as an alternative to the plain-text report.
"""

from rich.markup import escape
from rich.tree import Tree

from ..call_tree import CallTree, Node


def format_time(ms: float) -> str:
    """Convert milliseconds to a human-friendly string."""
    if ms >= 1_000:
        return f"{ms / 1_000:.2f}s"
    elif ms >= 1:
        return f"{ms:.2f}ms"
    else:
        return f"{ms * 1_000:.2f}μs"


def render(node: Node, tree: Tree, total_time: float):
    """Add the children of `node` in the order the call tree holds them."""
    for child in node.children:
        add_node(child, tree, total_time)


def add_node(node: Node, tree: Tree, total_time: float):
    dur = node.total_time_ms
    pct = dur / total_time * 100 if total_time else 0.0
    marker = ">" if node.occurrences <= 1 else ""
    branch = tree.add(f"[bold]{escape(node.frame.short_name)}[/] • {marker}{format_time(dur)} ({pct:.1f}%)")
    render(node, branch, total_time)


def build_rich_tree(call_tree: CallTree, title: str = "root") -> Tree:
    total = call_tree.total_time_ms
    tree = Tree(f"[b]{escape(title)}[/] • {format_time(total)} (100%)")
    for root in call_tree.roots:
        add_node(root, tree, total)
    return tree
