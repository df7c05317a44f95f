"""Path normalization and include/ignore pattern matching."""

from __future__ import annotations

import posixpath
import re
from functools import lru_cache
from typing import Iterable


def to_posix(path: str) -> str:
    return str(path).replace("\\", "/")


def normalize_rel(path: str) -> str:
    """Normalize a relative path: posix separators, no leading ``./`` or trailing ``/``.

    Returns ``"."`` for an empty result.
    """
    text = to_posix(path or "")
    if not text:
        return "."
    normalized = posixpath.normpath(text)
    normalized = re.sub(r"^(\./)+", "", normalized).rstrip("/")
    return normalized or "."


def is_inside(path: str) -> bool:
    """True for a normalized relative path that stays within its root."""
    return bool(path) and path != "." and not path.startswith("..") and not path.startswith("/")


def join_rel(a: str, b: str) -> str:
    aa = normalize_rel(a)
    bb = normalize_rel(b)
    if aa == ".":
        return bb
    if bb == ".":
        return aa
    return normalize_rel(f"{aa}/{bb}")


def to_graph_key(path: str, graph_root: str) -> str:
    """Map a project-relative or graph-root-relative path to a graph key."""
    root = normalize_rel(graph_root or ".")
    rel = normalize_rel(path)
    if root != "." and rel.startswith(root + "/"):
        return rel[len(root) + 1:]
    return rel


def to_project_rel(key: str, graph_root: str) -> str:
    return join_rel(graph_root or ".", key)


def unique_sorted(paths: Iterable[str]) -> list[str]:
    out = {normalize_rel(p) for p in paths if p}
    return sorted(p for p in out if is_inside(p))


def module_of(key: str) -> str:
    """Top-level directory of a graph key, ``"."`` for files at the root."""
    parts = key.split("/")
    return parts[0] if len(parts) > 1 else "."


def module_name(path: str) -> str:
    p = normalize_rel(path)
    head, sep, _ = p.partition("/")
    if not sep or not head:
        return "(root)"
    return head


@lru_cache(maxsize=256)
def _pattern_regex(pattern: str) -> re.Pattern[str]:
    out: list[str] = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "*" and pattern[i + 1:i + 2] == "*":
            out.append(".*")
            i += 2
            continue
        if ch == "*":
            out.append("[^/]*")
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("^" + "".join(out) + "(/|$)")


def matches_pattern(path: str, patterns: Iterable[str]) -> bool:
    """Glob match: ``**`` spans directories, ``*`` stays within one segment.

    A pattern matching a directory prefix matches everything beneath it.
    """
    return any(_pattern_regex(p).match(path) for p in patterns or ())


def should_process(path: str, include: Iterable[str] = (), ignore: Iterable[str] = ()) -> bool:
    include = list(include or ())
    if include and not matches_pattern(path, include):
        return False
    return not matches_pattern(path, ignore)
