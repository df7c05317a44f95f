"""Order source files implicated by failing tests.

Pipeline:
  1. map failing tests to their source files (the "involved" set)
  2. score each candidate by dependents and downstream failing-test reach
  3. greedily pick root causes until most failures are covered
  4. build a fix-order graph (dependency → dependent) over involved files
  5. condense it by strongly connected components and sort topologically
  6. layer the remaining files into parallel batches, leaves last
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from code_impact.models import (
    Candidate,
    DependencyGraph,
    EdgeDirection,
    PrioritizeConfig,
    RepairBatch,
    RepairPlan,
)
from code_impact.paths import is_inside, normalize_rel, unique_sorted

logger = logging.getLogger(__name__)


@dataclass
class FixGraph:
    """Fix-order edges: ``adj[dep]`` holds the files that must wait for ``dep``."""
    adj: dict[str, set[str]] = field(default_factory=dict)
    indegree: dict[str, int] = field(default_factory=dict)
    outdegree: dict[str, int] = field(default_factory=dict)


# ── Candidate scoring ────────────────────────────────────────


def collect_downstream(graph: DependencyGraph, key: str) -> set[str]:
    """``key`` plus every file that transitively imports it."""
    start = normalize_rel(key)
    if not is_inside(start):
        return set()

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
    return visited


def _candidate_order(c: Candidate):
    return (-c.dependents, -len(c.potential), -len(c.failing_tests), c.file)


def select_root_causes(
    candidates: list[Candidate],
    total_failing: int,
    config: PrioritizeConfig | None = None,
) -> list[str]:
    """Greedy coverage pick of high-leverage files; returns their graph keys.

    A candidate is taken only if its potential set covers a failing test not
    yet covered. Selection stops at the item cap, or once at least
    ``min_items`` are chosen and the coverage target is met. When nothing
    qualifies the top-ranked candidate is taken anyway.
    """
    config = config or PrioritizeConfig()
    ranked = sorted(candidates, key=_candidate_order)

    target = max(1, math.ceil(total_failing * config.coverage_target))
    max_items = min(config.max_items, max(config.min_items, math.ceil(len(ranked) * config.sample_fraction)))

    covered: set[str] = set()
    selected: list[str] = []
    for candidate in ranked:
        if len(selected) >= max_items:
            break
        added = candidate.potential - covered
        if not added:
            continue
        covered |= added
        selected.append(candidate.key)
        if len(selected) >= config.min_items and len(covered) >= target:
            break

    if not selected and ranked:
        selected.append(ranked[0].key)

    logger.debug("root causes %s cover %d/%d failing tests", selected, len(covered), total_failing)
    return selected


# ── Fix-order graph ──────────────────────────────────────────


def build_fix_graph(graph: DependencyGraph, involved: Iterable[str]) -> FixGraph:
    """Restrict the graph to ``involved`` and flip edges to dependency → dependent."""
    nodes = sorted(set(involved))
    node_set = set(nodes)
    fix = FixGraph(
        adj={k: set() for k in nodes},
        indegree={k: 0 for k in nodes},
        outdegree={k: 0 for k in nodes},
    )

    for key in nodes:
        for dep in graph.neighbors(key, EdgeDirection.IMPORTS):
            dep_key = normalize_rel(dep)
            if dep_key not in node_set or dep_key == key:
                continue
            if key in fix.adj[dep_key]:
                continue
            fix.adj[dep_key].add(key)
            fix.indegree[key] += 1
            fix.outdegree[dep_key] += 1
    return fix


def strongly_connected_components(adj: Mapping[str, Iterable[str]], nodes: Iterable[str]) -> list[list[str]]:
    """Tarjan's algorithm with an explicit work stack.

    Components come out in the order their roots finish, which is a reverse
    topological order of the condensation. Neighbours are visited sorted.
    """
    index: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    components: list[list[str]] = []
    counter = 0

    for root in nodes:
        if root in index:
            continue
        work = [(root, iter(sorted(adj.get(root, ()))))]
        index[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)

        while work:
            v, neighbors = work[-1]
            descended = False
            for w in neighbors:
                if w not in index:
                    index[w] = lowlink[w] = counter
                    counter += 1
                    stack.append(w)
                    on_stack.add(w)
                    work.append((w, iter(sorted(adj.get(w, ())))))
                    descended = True
                    break
                if w in on_stack:
                    lowlink[v] = min(lowlink[v], index[w])
            if descended:
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[v])

            if lowlink[v] == index[v]:
                component: list[str] = []
                while stack:
                    w = stack.pop()
                    on_stack.discard(w)
                    component.append(w)
                    if w == v:
                        break
                components.append(component)

    return components


def topo_sort_with_scc(adj: Mapping[str, Iterable[str]], nodes: Iterable[str]) -> tuple[list[str], list[list[str]]]:
    """Cycle-safe topological order: Kahn's algorithm over the SCC condensation.

    Ready components are taken lowest id first. Members of one component stay
    together in the order Tarjan popped them.

    Returns: (order, sccs)
    """
    node_list = list(nodes)
    sccs = strongly_connected_components(adj, node_list)
    comp_of = {n: i for i, comp in enumerate(sccs) for n in comp}

    comp_adj: dict[int, set[int]] = {i: set() for i in range(len(sccs))}
    comp_indeg: dict[int, int] = {i: 0 for i in range(len(sccs))}
    for u in node_list:
        cu = comp_of[u]
        for v in adj.get(u, ()):
            cv = comp_of.get(v)
            if cv is None or cv == cu or cv in comp_adj[cu]:
                continue
            comp_adj[cu].add(cv)
            comp_indeg[cv] += 1

    ready = sorted(cid for cid, deg in comp_indeg.items() if deg == 0)
    comp_order: list[int] = []
    while ready:
        cid = ready.pop(0)
        comp_order.append(cid)
        for nxt in comp_adj[cid]:
            comp_indeg[nxt] -= 1
            if comp_indeg[nxt] == 0:
                ready.append(nxt)
        ready.sort()

    order = [n for cid in comp_order for n in sccs[cid]]
    return order, sccs


def topo_batches(adj: Mapping[str, Iterable[str]], nodes: Iterable[str]) -> list[list[str]]:
    """Kahn layering: each batch is every node whose in-batch dependencies are done.

    On a residual cycle (nothing ready) the single minimum-indegree node,
    smallest name first, is extracted on its own so layering always ends.
    """
    node_set = set(nodes)
    indeg = {n: 0 for n in node_set}
    for u in node_set:
        for v in adj.get(u, ()):
            if v in node_set:
                indeg[v] += 1

    remaining = set(node_set)
    batches: list[list[str]] = []

    def release(done: Iterable[str]) -> None:
        for u in done:
            for v in adj.get(u, ()):
                if v in remaining:
                    indeg[v] = max(0, indeg[v] - 1)

    while remaining:
        ready = sorted(n for n in remaining if indeg[n] == 0)
        if not ready:
            lowest = min(indeg[n] for n in remaining)
            pick = min(n for n in remaining if indeg[n] == lowest)
            logger.debug("breaking residual cycle at %s (indegree %d)", pick, lowest)
            ready = [pick]
        batches.append(ready)
        remaining.difference_update(ready)
        release(ready)

    return batches


# ── Planner ──────────────────────────────────────────────────


class RepairPrioritizer:
    """Turn a failing-test list into a phased repair plan.

    Args:
        graph: Loaded dependency graph.
        test_to_sources: Test file → project-relative source files.
        config: Root-cause selection thresholds.
    """

    def __init__(
        self,
        graph: DependencyGraph,
        test_to_sources: Mapping[str, Iterable[str]] | None = None,
        config: PrioritizeConfig | None = None,
    ):
        self.graph = graph
        self.test_to_sources = {
            normalize_rel(t): {normalize_rel(s) for s in sources}
            for t, sources in (test_to_sources or {}).items()
        }
        self.config = config or PrioritizeConfig()

    def _involved_sources(self, failing: list[str]) -> dict[str, set[str]]:
        """Source file → failing tests mapped to it."""
        source_tests: dict[str, set[str]] = {}
        for test in failing:
            for source in self.test_to_sources.get(test, ()):
                if is_inside(source):
                    source_tests.setdefault(source, set()).add(test)

        if not source_tests:
            logger.warning("no failing test maps to a source file; treating tests as sources")
            source_tests = {test: {test} for test in failing}
        return source_tests

    def plan(self, failing_tests: Iterable[str]) -> RepairPlan:
        failing = unique_sorted(failing_tests)
        if not failing:
            return RepairPlan(total_failing=0, source_files=0)

        graph = self.graph
        source_tests = self._involved_sources(failing)

        key_file: dict[str, str] = {}
        key_tests: dict[str, set[str]] = {}
        for source in sorted(source_tests):
            key = graph.to_graph_key(source)
            key_file.setdefault(key, source)
            key_tests.setdefault(key, set()).update(source_tests[source])
        involved = sorted(key_file)

        candidates: list[Candidate] = []
        for key in involved:
            potential: set[str] = set()
            for downstream in collect_downstream(graph, key):
                potential |= key_tests.get(downstream, set())
            candidates.append(Candidate(
                file=key_file[key],
                key=key,
                dependents=len(graph.importers(key)),
                failing_tests=sorted(key_tests[key]),
                potential=potential,
            ))

        root_keys = set(select_root_causes(candidates, len(failing), self.config))
        fix = build_fix_graph(graph, involved)
        leaf_keys = {k for k in involved if fix.outdegree[k] == 0 and k not in root_keys}

        root_causes = sorted(
            (c for c in candidates if c.key in root_keys),
            key=lambda c: (-c.dependents, -c.potential_fixes, c.file),
        )

        def with_counts(keys: Iterable[str]) -> list[tuple[str, int]]:
            items = [(key_file[k], len(key_tests[k])) for k in keys]
            return sorted(items, key=lambda item: (-item[1], item[0]))

        middle = [k for k in involved if k not in root_keys and k not in leaf_keys]
        batches = []
        for layer in topo_batches(fix.adj, middle):
            if not layer:
                continue
            tests: set[str] = set()
            for k in layer:
                tests |= key_tests[k]
            batches.append(RepairBatch(files=with_counts(layer), tests=len(tests)))

        order, sccs = topo_sort_with_scc(fix.adj, involved)
        cyclic = [c for c in sccs if len(c) > 1]
        if cyclic:
            logger.info("%d dependency cycle(s) among involved files fixed as units", len(cyclic))

        return RepairPlan(
            total_failing=len(failing),
            source_files=len(involved),
            root_causes=root_causes,
            batches=batches,
            leaf_nodes=with_counts(leaf_keys),
            suggested_order=[key_file[k] for k in order],
        )
