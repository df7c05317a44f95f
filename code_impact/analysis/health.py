"""Health checks over a built graph: module cycles and orphan files."""

from __future__ import annotations

from code_impact.models import DependencyGraph


def list_orphans(graph: DependencyGraph) -> list[str]:
    """Project-relative paths of files with no imports and no importers."""
    out = [
        graph.to_project_path(key)
        for key, node in graph.files.items()
        if not node.imports and not node.imported_by
    ]
    return sorted(out)


def check_file(graph: DependencyGraph, path: str) -> dict | None:
    """Imports, importers and exports of one file.

    ``path`` may be graph-root-relative or project-relative. Returns ``None``
    when the file is not in the graph.
    """
    key = graph.to_graph_key(path)
    node = graph.node(key)
    if node is None:
        return None
    return {
        "file": key,
        "imports": list(node.imports),
        "importedBy": list(node.imported_by),
        "exports": list(node.exports),
    }


def analyze_health(graph: DependencyGraph, cycles: bool = True, orphans: bool = True) -> dict:
    """Summarize graph problems.

    Returns: {root, counts, ok, [cycles], [orphans]}; ``ok`` is False when a
    requested check found something.
    """
    found_cycles = [list(c) for c in graph.cycles]
    found_orphans = list_orphans(graph)

    result: dict = {
        "root": graph.root,
        "counts": {"cycles": len(found_cycles), "orphans": len(found_orphans)},
    }
    if cycles:
        result["cycles"] = found_cycles
    if orphans:
        result["orphans"] = found_orphans
    result["ok"] = not ((cycles and found_cycles) or (orphans and found_orphans))
    return result
