"""
Stack frames and samples captured from a running thread.
"""

import sys
from dataclasses import dataclass, field
from typing import Optional, Tuple

# deeper stacks are truncated at the outermost end
MAX_STACK_DEPTH = 512


@dataclass(frozen=True)
class Frame:
    """
    One call site. Two frames are equal iff their module and function match;
    the file and line are only kept for display so that samples taken at
    different lines of the same function merge into one node.
    """

    module: str
    function: str
    filename: Optional[str] = field(default=None, compare=False)
    lineno: Optional[int] = field(default=None, compare=False)

    @classmethod
    def from_name(cls, name: str, filename: str = None, lineno: int = None) -> "Frame":
        """Build a frame from a dotted name; the last segment is the function."""
        module, _, function = name.rpartition(".")
        return cls(module, function, filename, lineno)

    @classmethod
    def from_code_frame(cls, frame) -> "Frame":
        code = frame.f_code
        function = getattr(code, "co_qualname", code.co_name)
        module = frame.f_globals.get("__name__") or "<unknown>"
        return cls(module, function, code.co_filename, frame.f_lineno)

    @property
    def name(self) -> str:
        if not self.module:
            return self.function
        return f"{self.module}.{self.function}"

    @property
    def short_name(self) -> str:
        return f"{self.module.rpartition('.')[2]}.{self.function}()".lstrip(".")

    @property
    def location(self) -> str:
        if self.filename is None:
            return f"{self.name} (unknown source)"
        if self.lineno is None:
            return f'File "{self.filename}"'
        return f'File "{self.filename}", line {self.lineno}'

    def __str__(self):
        return self.name


@dataclass(frozen=True)
class Sample:
    """A stack snapshot, innermost call first, with the time since the previous one."""

    frames: Tuple[Frame, ...]
    duration_ms: float
    timestamp: float = 0.0

    def __post_init__(self):
        if not isinstance(self.frames, tuple):
            object.__setattr__(self, "frames", tuple(self.frames))


def capture_stack(frame, max_depth: int = MAX_STACK_DEPTH) -> Tuple[Frame, ...]:
    """Walk `frame` and its callers, innermost first."""
    stack = []
    while frame is not None and len(stack) < max_depth:
        stack.append(Frame.from_code_frame(frame))
        frame = frame.f_back
    return tuple(stack)


def capture_thread_stack(thread_id: int, max_depth: int = MAX_STACK_DEPTH) -> Tuple[Frame, ...]:
    """Snapshot the stack of another thread; empty if the thread is gone."""
    frame = sys._current_frames().get(thread_id)
    try:
        return capture_stack(frame, max_depth)
    finally:
        del frame
