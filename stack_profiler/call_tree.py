"""
The call tree: samples merged into a time-weighted prefix tree.

Every tree and node is immutable; the transformations (`pruned`, `collapsed`,
`collapsed_below`, `sorted`) return new trees, so any intermediate tree can
be kept and branched from.
"""

from dataclasses import dataclass, replace
from functools import cached_property
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .errors import ConfigurationError
from .frames import Frame, Sample
from .globs import Glob


@dataclass(frozen=True)
class Node:
    """
    A frame at a given call path.

    `own_time_ms` is the time of samples whose innermost frame ended here,
    `occurrences` the number of samples that passed through this node.
    """

    frame: Frame
    children: Tuple["Node", ...] = ()
    own_time_ms: float = 0.0
    occurrences: int = 0

    @cached_property
    def total_time_ms(self) -> float:
        """Own time plus the total time of all children."""
        return self.own_time_ms + sum(child.total_time_ms for child in self.children)

    @property
    def name(self) -> str:
        return self.frame.name

    def pruned(self) -> "Node":
        node = self
        while len(node.children) == 1:
            node = node.children[0]
        return node

    def collapsed(self) -> "Node":
        """This node as a leaf that owns its whole subtree's time."""
        return replace(self, children=(), own_time_ms=self.total_time_ms)

    def tree_matches(self, glob: Glob) -> bool:
        """True if this node and every node below it match `glob`."""
        return glob.matches(self.name) and all(child.tree_matches(glob) for child in self.children)

    def sorted(self, key: Callable[["Node"], object], reverse: bool = False) -> "Node":
        children = [child.sorted(key, reverse) for child in self.children]
        return replace(self, children=tuple(sorted(children, key=key, reverse=reverse)))

    def walk(self, depth: int = 0) -> Iterator[Tuple[int, "Node"]]:
        yield depth, self
        for child in self.children:
            yield from child.walk(depth + 1)

    def __repr__(self):
        return (
            f"Node({self.name}, {self.own_time_ms:g}/{self.total_time_ms:g}ms, "
            f"occurrences={self.occurrences})"
        )


def _longest_first(node: Node):
    return -node.total_time_ms


@dataclass(frozen=True)
class CallTree:
    roots: Tuple[Node, ...] = ()
    total_time_ms: float = 0.0
    sample_count: int = 0

    def __post_init__(self):
        if self.total_time_ms < 0:
            raise ValueError(f"Got negative total_time_ms {self.total_time_ms}")
        if not isinstance(self.roots, tuple):
            object.__setattr__(self, "roots", tuple(self.roots))

    def _with_roots(self, roots: Iterable[Node]) -> "CallTree":
        return replace(self, roots=tuple(roots))

    def pruned(self) -> "CallTree":
        """Drop the non-branching prefix of each root, down to the first fork or leaf."""
        return self._with_roots(root.pruned() for root in self.roots)

    def collapsed(self, soft: Glob = Glob.MATCH_NOTHING, hard: Glob = Glob.MATCH_NOTHING) -> "CallTree":
        """
        Collapse nodes into leaves. A node collapses when it matches `hard`, or
        when it and its whole subtree match `soft`.
        """

        def collapse(node: Node) -> Node:
            if hard.matches(node.name) or node.tree_matches(soft):
                return node.collapsed()
            return replace(node, children=tuple(collapse(child) for child in node.children))

        return self._with_roots(collapse(root) for root in self.roots)

    def collapsed_below(self, percent: float) -> "CallTree":
        """Collapse nodes that took less than `percent` of the total time."""
        if not 0 <= percent <= 100:
            raise ConfigurationError(f"percent must be between 0 and 100, got {percent}")
        if percent == 0 or self.total_time_ms == 0:
            return self

        def collapse(node: Node) -> Node:
            if node.total_time_ms * 100.0 / self.total_time_ms < percent:
                return node.collapsed()
            return replace(node, children=tuple(collapse(child) for child in node.children))

        return self._with_roots(collapse(root) for root in self.roots)

    def sorted(self, key: Callable[[Node], object] = None, reverse: bool = False) -> "CallTree":
        """
        Sort every level, children first. Defaults to the longest total time
        first; ties keep the order in which the frames were first seen.
        """
        key = key or _longest_first
        roots = [root.sorted(key, reverse) for root in self.roots]
        return self._with_roots(sorted(roots, key=key, reverse=reverse))

    def sorted_longest_first(self) -> "CallTree":
        return self.sorted(_longest_first)

    def group_totals(self, groups: Mapping[str, Sequence[str]]) -> Dict[str, float]:
        """
        Time spent per group of patterns, e.g. `{"DB": ["sqlite3.*"]}`.

        Groups are tried in order and the first match wins. A matched node's
        whole subtree counts towards its group and is not searched further, so
        IO done inside a matched DB call is not counted as IO.
        """
        globs = [(label, patterns if isinstance(patterns, Glob) else Glob(patterns))
                 for label, patterns in groups.items()]
        totals = {label: 0.0 for label, _ in globs}

        def walk(nodes: Iterable[Node]):
            for node in nodes:
                label = next((label for label, glob in globs if glob.matches(node.name)), None)
                if label is not None:
                    totals[label] += node.total_time_ms
                else:
                    walk(node.children)

        walk(self.roots)
        return totals

    def walk(self) -> Iterator[Tuple[int, Node]]:
        """Depth-first (depth, node) pairs."""
        for root in self.roots:
            yield from root.walk()

    def find(self, *names: str) -> Optional[Node]:
        """The node at the call path `names`, outermost first."""
        nodes = self.roots
        node = None
        for name in names:
            node = next((n for n in nodes if n.name == name), None)
            if node is None:
                return None
            nodes = node.children
        return node

    def is_empty(self) -> bool:
        return not self.roots


class _NodeBuilder:
    __slots__ = ("frame", "children", "own_time_ms", "occurrences")

    def __init__(self, frame: Frame):
        self.frame = frame
        self.children: Dict[Frame, "_NodeBuilder"] = {}
        self.own_time_ms = 0.0
        self.occurrences = 0

    def freeze(self) -> Node:
        return Node(
            self.frame,
            tuple(child.freeze() for child in self.children.values()),
            self.own_time_ms,
            self.occurrences,
        )


def build_call_tree(samples: Iterable[Sample], total_time_ms: float) -> CallTree:
    """
    Merge samples into a call tree. Identical call paths share nodes; only the
    innermost frame of each sample gets its duration as own time.
    """
    roots: Dict[Frame, _NodeBuilder] = {}
    count = 0
    for sample in samples:
        if not sample.frames:
            continue
        count += 1
        level = roots
        node = None
        for frame in reversed(sample.frames):
            node = level.get(frame)
            if node is None:
                node = level[frame] = _NodeBuilder(frame)
            node.occurrences += 1
            level = node.children
        node.own_time_ms += sample.duration_ms
    return CallTree(tuple(root.freeze() for root in roots.values()), total_time_ms, count)


def tree_from_paths(paths: Iterable[Tuple[Sequence[str], float]], total_time_ms: float = None) -> CallTree:
    """
    Build a tree from (outermost-first names, duration_ms) pairs. Handy for
    replaying folded stacks and for tests.
    """
    samples: List[Sample] = [
        Sample(tuple(Frame.from_name(name) for name in reversed(names)), duration)
        for names, duration in paths
    ]
    if total_time_ms is None:
        total_time_ms = sum(s.duration_ms for s in samples)
    return build_call_tree(samples, total_time_ms)
