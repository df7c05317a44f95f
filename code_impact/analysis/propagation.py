"""Bounded multi-source BFS over reverse dependencies for stale propagation."""

from __future__ import annotations

from collections import deque
from typing import Iterable

from code_impact.models import (
    DEFAULT_PROPAGATION_DEPTH,
    MAX_PROPAGATION_DEPTH,
    DependencyGraph,
    PropagatedRecord,
    PropagationResult,
    StaleRecord,
)
from code_impact.paths import normalize_rel, unique_sorted


def clamp_depth(depth: int | None, maximum: int, default: int = DEFAULT_PROPAGATION_DEPTH) -> int:
    if depth is None:
        depth = default
    return max(0, min(maximum, int(depth)))


def propagate(
    graph: DependencyGraph,
    direct_keys: Iterable[str],
    depth: int | None = DEFAULT_PROPAGATION_DEPTH,
) -> PropagationResult:
    """Mark dependents of the direct stale files as stale, level by level.

    Every direct file starts at level 0; each step follows ``importedBy``.
    A file is recorded once, at the first (and therefore smallest) level it
    is reached, together with the neighbour that reached it. Traversal stops
    expanding at ``depth`` (clamped to ``MAX_PROPAGATION_DEPTH``).
    """
    max_depth = clamp_depth(depth, MAX_PROPAGATION_DEPTH)

    level: dict[str, int] = {}
    cause: dict[str, str] = {}
    queue: deque[tuple[str, int]] = deque()

    for key in unique_sorted(direct_keys):
        level[key] = 0
        queue.append((key, 0))

    while queue:
        current, current_level = queue.popleft()
        if current_level >= max_depth:
            continue
        for parent in sorted(normalize_rel(p) for p in graph.importers(current)):
            if parent in level:
                continue
            level[parent] = current_level + 1
            cause[parent] = current
            queue.append((parent, current_level + 1))

    propagated = [
        PropagatedRecord(file=key, level=lvl, source=cause[key])
        for key, lvl in level.items()
        if lvl > 0
    ]
    propagated.sort(key=lambda r: (r.level, r.file))

    level_counts: dict[int, int] = {}
    for record in propagated:
        level_counts[record.level] = level_counts.get(record.level, 0) + 1

    return PropagationResult(propagated=propagated, level_counts=dict(sorted(level_counts.items())))


def summarize(direct: list[StaleRecord], result: PropagationResult) -> dict[str, int]:
    summary = {
        "direct": len(direct),
        "propagated": len(result.propagated),
        "total": len(direct) + len(result.propagated),
    }
    for lvl, count in sorted(result.level_counts.items()):
        summary[f"L{lvl}"] = count
    return summary
