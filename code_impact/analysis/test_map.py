"""Source and test lookups and failing-test extraction from test reporter output."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Mapping

from code_impact.paths import is_inside, normalize_rel, to_posix, unique_sorted
from code_impact.store import SourceTestMap

logger = logging.getLogger(__name__)

_FAILED_STATUSES = {"failed", "fail"}


def _entries(test_map: SourceTestMap | None):
    if test_map is None:
        return
    for module in test_map.modules.values():
        yield from module.files.values()


def build_test_lookup(test_map: SourceTestMap | None) -> dict[str, list[str]]:
    """Map each source file to the sorted list of tests that exercise it."""
    lookup: dict[str, list[str]] = {}
    for entry in _entries(test_map):
        source = normalize_rel(entry.path)
        if not is_inside(source):
            continue
        lookup[source] = unique_sorted(entry.tests)
    return lookup


def build_test_to_sources(test_map: SourceTestMap | None) -> dict[str, set[str]]:
    """Invert the mapping: each test file to the source files it covers."""
    out: dict[str, set[str]] = {}
    for entry in _entries(test_map):
        source = normalize_rel(entry.path)
        if not is_inside(source):
            continue
        for test in entry.tests:
            test_file = normalize_rel(test)
            if is_inside(test_file):
                out.setdefault(test_file, set()).add(source)
    return out


def collect_test_files(lookup: Mapping[str, list[str]], files: Iterable[str]) -> list[str]:
    """Tests to re-run for ``files``, deduplicated and sorted."""
    out: set[str] = set()
    for f in files:
        out.update(lookup.get(normalize_rel(f), ()))
    return unique_sorted(out)


def normalize_result_path(value: Any, project_root: Path) -> str:
    """Project-relative path for an absolute or relative reporter path; ``""`` if outside."""
    text = str(value or "").strip()
    if not text:
        return ""
    path = Path(text)
    if path.is_absolute():
        try:
            text = to_posix(str(path.relative_to(project_root)))
        except ValueError:
            return ""
    rel = normalize_rel(text)
    return rel if is_inside(rel) else ""


def _has_failed(result: Mapping[str, Any]) -> bool:
    assertions = result.get("assertionResults")
    if isinstance(assertions, list):
        return any(
            str((a or {}).get("status", "")).lower() in _FAILED_STATUSES
            for a in assertions
            if isinstance(a, dict)
        )
    failing = result.get("numFailingTests")
    if isinstance(failing, int) and not isinstance(failing, bool):
        return failing > 0
    status = result.get("status")
    if isinstance(status, str):
        return status.lower() in _FAILED_STATUSES
    return False


def extract_failing_tests(result_json: Any, project_root: Path) -> tuple[list[str], dict[str, set[str]]]:
    """Failing test files from a saved result document.

    Two shapes are understood:
      - cached results: ``{"errors": [{"testFile", "sourceFile"}, ...]}``, which
        also yields a fallback test → sources mapping
      - jest/vitest reporter JSON: ``{"testResults": [{"name", ...}, ...]}``

    Returns: (failing_tests, fallback_test_to_sources)
    """
    if not isinstance(result_json, dict):
        logger.warning("test result document is not an object; no failing tests read")
        return [], {}

    errors = result_json.get("errors")
    if isinstance(errors, list):
        failing: list[str] = []
        fallback: dict[str, set[str]] = {}
        for error in errors:
            if not isinstance(error, dict):
                continue
            test_file = normalize_result_path(error.get("testFile"), project_root)
            if not test_file:
                continue
            failing.append(test_file)
            source = normalize_result_path(error.get("sourceFile"), project_root)
            if source:
                fallback.setdefault(test_file, set()).add(source)
        return unique_sorted(failing), fallback

    failing = []
    for result in result_json.get("testResults") or []:
        if not isinstance(result, dict):
            continue
        name = result.get("name") or result.get("file") or result.get("path") or result.get("filepath")
        test_file = normalize_result_path(name, project_root)
        if test_file and _has_failed(result):
            failing.append(test_file)
    return unique_sorted(failing), {}
