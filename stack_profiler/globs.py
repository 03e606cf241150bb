"""
Glob matching over fully-qualified symbol names.

`pkg.db.*` matches `pkg.db.Query.run` and `pkg.db.pool.connect` but not
`pkg.dbx.Client`. A `*` matches any remaining characters, dots included.
"""

import re
from typing import Iterable

from .errors import ConfigurationError

_WHITESPACE = re.compile(r"\s")


def _compile_pattern(pattern) -> str:
    if not isinstance(pattern, str):
        raise ConfigurationError(f"Glob pattern must be a string, got {pattern!r}")
    if not pattern:
        raise ConfigurationError("Glob pattern must not be empty")
    if _WHITESPACE.search(pattern):
        raise ConfigurationError(f"Glob pattern {pattern!r} contains whitespace")
    if pattern != "*" and "" in pattern.split("."):
        raise ConfigurationError(f"Glob pattern {pattern!r} has an empty name segment")
    return ".*".join(re.escape(part) for part in pattern.split("*"))


class Glob:
    """Matches a symbol name against any of its patterns."""

    def __init__(self, patterns: Iterable[str] = ()):
        if isinstance(patterns, str):
            patterns = [patterns]
        self.patterns = tuple(patterns)
        compiled = [_compile_pattern(p) for p in self.patterns]
        # an empty alternation would match the empty string
        self._regex = re.compile("|".join(compiled)) if compiled else None

    def matches(self, name: str) -> bool:
        if self._regex is None:
            return False
        return self._regex.fullmatch(name) is not None

    def __bool__(self):
        return bool(self.patterns)

    def __eq__(self, other):
        return isinstance(other, Glob) and self.patterns == other.patterns

    def __hash__(self):
        return hash(self.patterns)

    def __repr__(self):
        return f"Glob({list(self.patterns)!r})"


def to_glob(pattern: str) -> Glob:
    """Build a single-pattern Glob."""
    return Glob([pattern])


Glob.MATCH_NOTHING = Glob([])
Glob.MATCH_EVERYTHING = Glob(["*"])
