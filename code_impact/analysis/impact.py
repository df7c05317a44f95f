"""Two-tier reverse-dependency reach of a change set."""

from __future__ import annotations

import logging
from collections import deque
from typing import Iterable, Mapping

from code_impact.analysis.propagation import clamp_depth
from code_impact.analysis.test_map import collect_test_files
from code_impact.models import (
    DEFAULT_IMPACT_DEPTH,
    DEFAULT_RISK_THRESHOLD,
    DEFAULT_RISK_TOP,
    MAX_IMPACT_DEPTH,
    ChangeMode,
    DependencyGraph,
    HighRiskItem,
    ImpactResult,
)
from code_impact.paths import is_inside, matches_pattern, module_name, normalize_rel

logger = logging.getLogger(__name__)


def analyze_impact(
    graph: DependencyGraph,
    changed: Iterable[str],
    depth: int | None = DEFAULT_IMPACT_DEPTH,
) -> tuple[set[str], set[str], set[str]]:
    """Direct (L1) and transitive (L2) importers of the changed files.

    Depth is clamped to ``[0, 2]``. Returns ``(l1, l2, affected)`` where the
    tiers are disjoint, exclude the changed files, and ``affected = l1 | l2``.
    """
    max_depth = clamp_depth(depth, MAX_IMPACT_DEPTH, DEFAULT_IMPACT_DEPTH)
    start = {normalize_rel(f) for f in changed}
    visited = set(start)
    frontier = set(start)
    tiers: list[set[str]] = [set(), set()]

    for d in range(1, max_depth + 1):
        nxt: set[str] = set()
        for file in sorted(frontier):
            for parent in graph.importers(file):
                rel = normalize_rel(parent)
                if not is_inside(rel) or rel in visited:
                    continue
                visited.add(rel)
                nxt.add(rel)
                tiers[d - 1].add(rel)
        frontier = nxt
        if not frontier:
            break

    l1, l2 = tiers
    return l1, l2, l1 | l2


def count_all_affected(graph: DependencyGraph, file: str) -> int:
    """Size of the unbounded reverse-dependency closure of one file (itself excluded)."""
    start = graph.to_graph_key(file)
    if start not in graph.files:
        return 0

    visited = {start}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        for parent in graph.importers(current):
            rel = normalize_rel(parent)
            if not is_inside(rel) or rel in visited:
                continue
            visited.add(rel)
            queue.append(rel)
    return len(visited) - 1


def find_high_risk(
    graph: DependencyGraph,
    changed: Iterable[str],
    threshold: int = DEFAULT_RISK_THRESHOLD,
    top: int = DEFAULT_RISK_TOP,
) -> list[HighRiskItem]:
    """Changed files whose total reach is at least ``threshold``, largest first."""
    items = [HighRiskItem(file=f, affected_count=count_all_affected(graph, f)) for f in changed]
    items = [item for item in items if item.affected_count >= threshold]
    items.sort(key=lambda item: (-item.affected_count, item.file))
    return items[:top]


def module_breakdown(files: Iterable[str]) -> dict[str, int]:
    out: dict[str, int] = {}
    for f in files:
        mod = module_name(f)
        out[mod] = out.get(mod, 0) + 1
    return out


def build_impact_report(
    graph: DependencyGraph,
    changed: Iterable[str],
    depth: int | None = DEFAULT_IMPACT_DEPTH,
    test_lookup: Mapping[str, list[str]] | None = None,
    ignore: Iterable[str] = (),
    threshold: int = DEFAULT_RISK_THRESHOLD,
    top: int = DEFAULT_RISK_TOP,
    mode: ChangeMode = ChangeMode.EXPLICIT,
) -> ImpactResult:
    """Full impact report for a change set.

    ``ignore`` globs drop matching files from the changed list and from both
    tiers. Tier entries are project-relative paths. Test files are a lookup
    join over ``changed | affected``, reported only when ``test_lookup`` is
    given.
    """
    ignore = list(ignore)
    changed_list = sorted({normalize_rel(f) for f in changed if is_inside(normalize_rel(f))})
    if ignore:
        changed_list = [f for f in changed_list if not matches_pattern(f, ignore)]

    keys = [graph.to_graph_key(f) for f in changed_list]
    for key in keys:
        if key not in graph.files:
            logger.warning("not in dep graph: %s", key)
    l1, l2, _ = analyze_impact(graph, keys, depth)

    def visible(keys: set[str]) -> list[str]:
        paths = {graph.to_project_path(k) for k in keys}
        return sorted(p for p in paths if not (ignore and matches_pattern(p, ignore)))

    l1_list = visible(l1)
    l2_list = visible(l2)
    affected = sorted(set(l1_list) | set(l2_list))

    result = ImpactResult(
        changed=changed_list,
        l1=l1_list,
        l2=l2_list,
        high_risk=find_high_risk(graph, changed_list, threshold, top),
        module_breakdown=module_breakdown(affected),
        mode=mode,
    )

    if test_lookup is not None:
        universe = set(changed_list) | set(affected)
        result.test_files = collect_test_files(test_lookup, universe)
    return result
