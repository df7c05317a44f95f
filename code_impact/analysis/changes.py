"""Detect the directly stale set from explicit paths or file mtimes."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from code_impact.models import ChangeMode, ChangeSet, DependencyGraph, StaleRecord
from code_impact.paths import is_inside, normalize_rel, to_posix, unique_sorted

logger = logging.getLogger(__name__)


def split_changed_args(values: Iterable[str]) -> list[str]:
    """Flatten repeated and comma-separated ``--changed`` values."""
    out: list[str] = []
    for value in values:
        for part in str(value).split(","):
            part = part.strip()
            if part:
                out.append(part)
    return out


def resolve_user_paths(project_root: Path, cwd: Path, inputs: Iterable[str]) -> list[str]:
    """Convert absolute or cwd-relative user paths to project-relative ones.

    Paths outside the project are dropped.
    """
    project_root = project_root.resolve()
    out: list[str] = []
    for raw in inputs:
        text = str(raw).strip()
        if not text:
            continue
        path = Path(text)
        abs_path = path if path.is_absolute() else (cwd / path)
        try:
            rel = to_posix(str(abs_path.resolve().relative_to(project_root)))
        except ValueError:
            logger.warning("outside project root, ignored: %s", text)
            continue
        rel = normalize_rel(rel)
        if is_inside(rel):
            out.append(rel)
    return out


def file_mtime(path: Path) -> datetime | None:
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    except OSError:
        return None


def graph_root_dir(graph: DependencyGraph, project_root: Path) -> Path:
    return project_root if graph.root == "." else project_root / graph.root


def detect_explicit(graph: DependencyGraph, project_root: Path, inputs: Iterable[str]) -> ChangeSet:
    """Direct stale set from caller-named files.

    Inputs may be project-relative or graph-root-relative. Files missing from
    the graph are reported in ``missing`` and excluded from propagation.
    """
    keys = unique_sorted(graph.to_graph_key(p) for p in split_changed_args(inputs))
    base = graph_root_dir(graph, project_root)

    changes = ChangeSet(mode=ChangeMode.EXPLICIT)
    for key in keys:
        if key not in graph.files:
            changes.missing.append(key)
            logger.warning("not in dep graph: %s", key)
            continue
        changes.direct.append(StaleRecord(file=key, mtime=file_mtime(base / key)))
    return changes


def detect_automatic(graph: DependencyGraph, project_root: Path) -> ChangeSet:
    """Direct stale set: files modified strictly after the graph was generated."""
    base = graph_root_dir(graph, project_root)
    generated = graph.generated
    if generated.tzinfo is None:
        generated = generated.replace(tzinfo=timezone.utc)

    changes = ChangeSet(mode=ChangeMode.AUTOMATIC)
    for key in sorted(graph.files):
        if not is_inside(key):
            continue
        mtime = file_mtime(base / key)
        if mtime is None:
            continue
        if mtime > generated:
            changes.direct.append(StaleRecord(file=key, mtime=mtime))
    logger.debug("%d file(s) newer than graph baseline %s", len(changes.direct), generated)
    return changes


def detect_changes(
    graph: DependencyGraph,
    project_root: Path,
    changed: Iterable[str] | None = None,
) -> ChangeSet:
    """Explicit detection when ``changed`` names any file, mtime comparison otherwise."""
    explicit = split_changed_args(changed or [])
    if explicit:
        return detect_explicit(graph, project_root, explicit)
    return detect_automatic(graph, project_root)
