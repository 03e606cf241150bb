"""
speedscope.py

Exports samples as FlameGraph-style folded stacks, which Speedscope
(https://www.speedscope.app) and flamegraph.pl both read:

  module.main;module.Helper.load;json.loads 40
"""

from typing import Dict, Iterable, Iterator, Tuple

from ..frames import Sample


def fold_samples(samples: Iterable[Sample], min_ms: float = 0) -> Iterator[str]:
    """
    Aggregate samples with identical stacks and yield
      root;child;...;leaf <duration_ms>
    in the order the stacks were first seen.
    """
    folded: Dict[Tuple[str, ...], float] = {}
    for sample in samples:
        if not sample.frames:
            continue
        stack = tuple(frame.name for frame in reversed(sample.frames))
        folded[stack] = folded.get(stack, 0.0) + sample.duration_ms
    for stack, duration in folded.items():
        if duration < min_ms:
            continue
        # folded stacks use ';' as the separator and whole-number weights
        names = [name.replace(";", ":") for name in stack]
        print_weight = max(round(duration), 1)
        yield f"{';'.join(names)} {print_weight}"


def write_folded(samples: Iterable[Sample], path: str, min_ms: float = 0) -> int:
    """Write folded stacks to `path`; returns the number of lines written."""
    count = 0
    with open(path, "w") as f:
        for line in fold_samples(samples, min_ms=min_ms):
            f.write(line + "\n")
            count += 1
    return count
