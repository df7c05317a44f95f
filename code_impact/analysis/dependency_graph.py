"""Build the JS dependency graph and detect cycles between modules."""

from __future__ import annotations

import logging
import posixpath
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Mapping

from code_impact.errors import InvalidInputError
from code_impact.models import (
    BuildResult,
    DependencyGraph,
    FileNode,
    ModuleStats,
    ScanConfig,
)
from code_impact.paths import module_of, normalize_rel, to_posix
from code_impact.scanner import get_scanner

logger = logging.getLogger(__name__)

# DFS colors
WHITE, GRAY, BLACK = 0, 1, 2


def resolve_specifier(
    spec: str,
    importer_key: str,
    known: Mapping[str, object] | set[str],
    extensions: tuple[str, ...] = (".js",),
) -> str | None:
    """Resolve a relative specifier to the key of a scanned file.

    Tries the literal path, then each extension appended, then a directory
    index. Bare (package) specifiers and paths escaping the scan root
    resolve to ``None``.
    """
    spec = spec.strip()
    if not spec.startswith("."):
        return None

    base = posixpath.normpath(posixpath.join(posixpath.dirname(importer_key), spec))
    candidates = [base]
    candidates += [base + ext for ext in extensions]
    candidates += [posixpath.join(base, "index" + ext) for ext in extensions]

    for candidate in candidates:
        if candidate.startswith("..") or candidate.startswith("/"):
            continue
        if candidate in known:
            return candidate
    return None


def canonicalize_cycle(cycle: list[str]) -> list[str]:
    """Rotate a cycle so it starts at its lexicographically smallest member."""
    if len(cycle) <= 1:
        return list(cycle)
    start = min(range(len(cycle)), key=lambda i: cycle[i])
    return cycle[start:] + cycle[:start]


def detect_cycles(edges: Mapping[str, Iterable[str]]) -> list[list[str]]:
    """Find cycles with a white/gray/black DFS.

    Each back edge into a gray node yields the stack slice from that node to
    the top. Cycles are canonicalized and deduplicated, and the result is
    independent of the iteration order of ``edges``.
    """
    nodes = set(edges)
    for targets in edges.values():
        nodes.update(targets)
    adj = {n: sorted(set(edges.get(n, ()))) for n in sorted(nodes)}

    color = {n: WHITE for n in adj}
    seen: set[tuple[str, ...]] = set()
    cycles: list[list[str]] = []

    for root in adj:
        if color[root] != WHITE:
            continue
        path: list[str] = [root]
        position = {root: 0}
        color[root] = GRAY
        stack = [(root, iter(adj[root]))]

        while stack:
            node, neighbors = stack[-1]
            advanced = False
            for nxt in neighbors:
                if color[nxt] == WHITE:
                    color[nxt] = GRAY
                    position[nxt] = len(path)
                    path.append(nxt)
                    stack.append((nxt, iter(adj[nxt])))
                    advanced = True
                    break
                if color[nxt] == GRAY:
                    canon = canonicalize_cycle(path[position[nxt]:])
                    key = tuple(canon)
                    if key not in seen:
                        seen.add(key)
                        cycles.append(canon)
            if advanced:
                continue
            stack.pop()
            path.pop()
            del position[node]
            color[node] = BLACK

    cycles.sort(key=lambda c: "|".join(c))
    return cycles


def module_edges(files: Mapping[str, FileNode]) -> dict[str, set[str]]:
    """Collapse file edges to cross-module edges (self-loops excluded)."""
    edges: dict[str, set[str]] = {}
    for key, node in files.items():
        mod = module_of(key)
        edges.setdefault(mod, set())
        for dep in node.imports:
            dep_mod = module_of(dep)
            edges.setdefault(dep_mod, set())
            if dep_mod != mod:
                edges[mod].add(dep_mod)
    return edges


def module_stats(files: Mapping[str, FileNode], edges: Mapping[str, set[str]]) -> dict[str, ModuleStats]:
    counts: dict[str, int] = {}
    for key in files:
        mod = module_of(key)
        counts[mod] = counts.get(mod, 0) + 1

    in_edges: dict[str, set[str]] = {mod: set() for mod in edges}
    for src, targets in edges.items():
        for target in targets:
            in_edges.setdefault(target, set()).add(src)

    return {
        mod: ModuleStats(
            files=counts.get(mod, 0),
            in_degree=len(in_edges.get(mod, ())),
            out_degree=len(edges[mod]),
        )
        for mod in sorted(edges)
    }


def infer_root_from_include(include: list[str] | None) -> str:
    """Longest common directory prefix of include globs, e.g. ``["js/agents/**"] -> "js/agents"``."""
    prefixes: list[list[str]] = []
    for pattern in include or []:
        cut = str(pattern).split("*")[0].rstrip("/")
        normalized = normalize_rel(cut or ".")
        if normalized != ".":
            prefixes.append(normalized.split("/"))

    if not prefixes:
        return "."

    common: list[str] = []
    for segments in zip(*prefixes):
        if all(s == segments[0] for s in segments):
            common.append(segments[0])
        else:
            break
    return "/".join(common) if common else "."


def resolve_module_root(module_arg: str, project_root: Path) -> str:
    """Validate a ``--module`` directory and return it project-relative."""
    candidate = Path(module_arg)
    abs_path = candidate if candidate.is_absolute() else project_root / normalize_rel(module_arg)
    abs_path = abs_path.resolve()
    try:
        rel = to_posix(str(abs_path.relative_to(project_root.resolve())))
    except ValueError:
        raise InvalidInputError(f"Path is outside project root: {module_arg}") from None
    if not abs_path.exists():
        raise InvalidInputError(f"Module path not found: {module_arg}")
    if not abs_path.is_dir():
        raise InvalidInputError(f"Module path is not a directory: {module_arg}")
    return normalize_rel(rel)


class DependencyGraphBuilder:
    """Build a file/module dependency graph from a directory of JS modules."""

    def __init__(self, config: ScanConfig | None = None):
        self.config = config or ScanConfig()
        self.scanner = get_scanner(skip_dirs=self.config.skip_dirs)

    def build(self, project_root: Path, root_rel: str = ".") -> BuildResult:
        project_root = project_root.resolve()
        root_rel = normalize_rel(root_rel)
        root_abs = project_root if root_rel == "." else (project_root / root_rel).resolve()

        # Step 1: Discover files; every scanned file gets a node even if parsing fails
        scanned = self.scanner.scan_directory(root_abs, project_root, self.config)
        nodes: dict[str, FileNode] = {key: FileNode() for key in scanned}
        imports: dict[str, set[str]] = {key: set() for key in scanned}
        exports: dict[str, set[str]] = {key: set() for key in scanned}
        warnings: list[str] = []

        # Step 2: Forward edges and exports
        for key, path in scanned.items():
            try:
                result = self.scanner.scan_file(path)
            except (OSError, UnicodeDecodeError) as e:
                warnings.append(f"read failed: {key} ({e})")
                logger.warning("read failed: %s (%s)", key, e)
                continue
            except (ValueError, IndexError, RecursionError) as e:
                warnings.append(f"parse failed: {key} ({e})")
                logger.warning("parse failed: %s (%s)", key, e)
                continue

            for spec in result.specifiers:
                resolved = resolve_specifier(spec, key, scanned, self.config.extensions)
                if resolved is None:
                    logger.debug("unresolved specifier %r in %s", spec, key)
                    continue
                if resolved != key:
                    imports[key].add(resolved)
            exports[key].update(result.exports)

        # Step 3: Reverse index in one pass
        imported_by: dict[str, set[str]] = {key: set() for key in scanned}
        for key, deps in imports.items():
            for dep in deps:
                imported_by[dep].add(key)

        for key, node in nodes.items():
            node.imports = sorted(imports[key])
            node.imported_by = sorted(imported_by[key])
            node.exports = sorted(exports[key])

        # Step 4: Module aggregation and cycles
        edges = module_edges(nodes)
        graph = DependencyGraph(
            root=root_rel,
            generated=datetime.now(timezone.utc),
            files=dict(sorted(nodes.items())),
            modules=module_stats(nodes, edges),
            cycles=detect_cycles(edges),
        )
        logger.info(
            "built graph for %s: %d files, %d modules, %d cycles",
            root_rel, len(graph.files), len(graph.modules), len(graph.cycles),
        )
        return BuildResult(graph=graph, warnings=warnings)
