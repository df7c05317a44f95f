"""Tests for change detection, stale propagation and impact analysis."""

import os
import shutil
from collections import deque
from datetime import datetime, timedelta, timezone
from pathlib import Path

from code_impact.models import DependencyGraph, FileNode

FIXTURES = Path(__file__).parent / "fixtures"


# ── Helpers ───────────────────────────────────────────────────

def _graph(imports, root="."):
    """Graph from a ``{file: [imported files]}`` mapping with the reverse index filled in."""
    keys = set(imports)
    for deps in imports.values():
        keys.update(deps)
    files = {k: FileNode(imports=sorted(imports.get(k, []))) for k in sorted(keys)}
    for key, deps in imports.items():
        for dep in deps:
            files[dep].imported_by.append(key)
    for node in files.values():
        node.imported_by.sort()
    return DependencyGraph(root=root, files=files)


def _chain():
    # c imports b imports a
    return _graph({"a.js": [], "b.js": ["a.js"], "c.js": ["b.js"]})


def _shortest_levels(graph, sources):
    dist = {s: 0 for s in sources}
    queue = deque(sources)
    while queue:
        cur = queue.popleft()
        for parent in graph.importers(cur):
            if parent not in dist:
                dist[parent] = dist[cur] + 1
                queue.append(parent)
    return dist


# ── Change detection ──────────────────────────────────────────

class TestChangeDetection:
    def _project(self, tmp_path, root_rel="."):
        from code_impact.analysis.dependency_graph import DependencyGraphBuilder
        project = tmp_path / "project"
        shutil.copytree(FIXTURES / "project", project)
        graph = DependencyGraphBuilder().build(project, root_rel).graph
        return project, graph

    def test_explicit_splits_and_reports_missing(self, tmp_path):
        from code_impact.analysis.changes import detect_explicit
        from code_impact.models import ChangeMode
        project, graph = self._project(tmp_path)
        changes = detect_explicit(graph, project, ["src/b.js,./src/a.js", "gone.js"])
        assert changes.mode is ChangeMode.EXPLICIT
        assert changes.keys == ["src/a.js", "src/b.js"]
        assert changes.missing == ["gone.js"]
        assert all(r.mtime is not None for r in changes.direct)

    def test_explicit_accepts_project_relative_under_scoped_root(self, tmp_path):
        from code_impact.analysis.changes import detect_explicit
        project, graph = self._project(tmp_path, "src")
        changes = detect_explicit(graph, project, ["src/a.js", "b.js"])
        assert changes.keys == ["a.js", "b.js"]

    def test_automatic_uses_strictly_newer_mtime(self, tmp_path):
        from code_impact.analysis.changes import detect_automatic
        from code_impact.models import ChangeMode
        project, graph = self._project(tmp_path)
        baseline = datetime(2024, 1, 1, tzinfo=timezone.utc)
        graph.generated = baseline
        old = (baseline - timedelta(hours=1)).timestamp()
        for key in graph.files:
            os.utime(project / key, (old, old))
        newer = (baseline + timedelta(hours=1)).timestamp()
        os.utime(project / "src" / "b.js", (newer, newer))
        same = baseline.timestamp()
        os.utime(project / "orphan.js", (same, same))

        changes = detect_automatic(graph, project)
        assert changes.mode is ChangeMode.AUTOMATIC
        assert changes.keys == ["src/b.js"]

    def test_automatic_skips_deleted_files(self, tmp_path):
        from code_impact.analysis.changes import detect_automatic
        project, graph = self._project(tmp_path)
        graph.generated = datetime(2000, 1, 1, tzinfo=timezone.utc)
        (project / "orphan.js").unlink()
        assert "orphan.js" not in detect_automatic(graph, project).keys

    def test_detect_changes_dispatch(self, tmp_path):
        from code_impact.analysis.changes import detect_changes
        from code_impact.models import ChangeMode
        project, graph = self._project(tmp_path)
        assert detect_changes(graph, project, ["src/a.js"]).mode is ChangeMode.EXPLICIT
        assert detect_changes(graph, project, []).mode is ChangeMode.AUTOMATIC

    def test_resolve_user_paths(self, tmp_path):
        from code_impact.analysis.changes import resolve_user_paths
        project, _ = self._project(tmp_path)
        paths = resolve_user_paths(project, project / "src", ["a.js", str(project / "orphan.js"), "../../elsewhere.js"])
        assert paths == ["src/a.js", "orphan.js"]


# ── Propagation ───────────────────────────────────────────────

class TestPropagate:
    def test_chain_levels_and_sources(self):
        from code_impact.analysis.propagation import propagate
        result = propagate(_chain(), ["a.js"], 2)
        assert [(r.file, r.level, r.source) for r in result.propagated] == [
            ("b.js", 1, "a.js"),
            ("c.js", 2, "b.js"),
        ]
        assert result.level_counts == {1: 1, 2: 1}

    def test_depth_bounds_traversal(self):
        from code_impact.analysis.propagation import propagate
        assert [r.file for r in propagate(_chain(), ["a.js"], 1).propagated] == ["b.js"]
        assert propagate(_chain(), ["a.js"], 0).propagated == []

    def test_depth_is_clamped(self):
        from code_impact.analysis.propagation import propagate
        from code_impact.models import MAX_PROPAGATION_DEPTH
        n = MAX_PROPAGATION_DEPTH + 5
        imports = {f"f{i:02d}.js": [f"f{i - 1:02d}.js"] if i else [] for i in range(n + 1)}
        result = propagate(_graph(imports), ["f00.js"], 1000)
        assert len(result.propagated) == MAX_PROPAGATION_DEPTH
        assert max(r.level for r in result.propagated) == MAX_PROPAGATION_DEPTH

    def test_level_is_shortest_hop_count(self):
        from code_impact.analysis.propagation import propagate
        graph = _graph({
            "a.js": [],
            "b.js": ["a.js"],
            "c.js": ["b.js", "a.js"],
            "d.js": ["c.js"],
            "e.js": ["d.js", "x.js"],
            "x.js": [],
        })
        result = propagate(graph, ["a.js", "x.js"], 10)
        shortest = _shortest_levels(graph, ["a.js", "x.js"])
        for record in result.propagated:
            assert record.level == shortest[record.file]
        assert {r.file: r.level for r in result.propagated}["c.js"] == 1
        assert {r.file: r.level for r in result.propagated}["e.js"] == 1

    def test_direct_files_not_repeated(self):
        from code_impact.analysis.propagation import propagate
        result = propagate(_chain(), ["a.js", "b.js"], 2)
        assert [r.file for r in result.propagated] == ["c.js"]
        assert result.propagated[0].source == "b.js"

    def test_summary(self):
        from code_impact.analysis.propagation import propagate, summarize
        from code_impact.models import StaleRecord
        result = propagate(_chain(), ["a.js"], 2)
        summary = summarize([StaleRecord("a.js")], result)
        assert summary == {"direct": 1, "propagated": 2, "total": 3, "L1": 1, "L2": 1}


# ── Impact ────────────────────────────────────────────────────

class TestImpact:
    def test_chain_tiers(self):
        from code_impact.analysis.impact import analyze_impact
        l1, l2, affected = analyze_impact(_chain(), ["a.js"], 2)
        assert l1 == {"b.js"}
        assert l2 == {"c.js"}
        assert affected == {"b.js", "c.js"}

    def test_tiers_disjoint(self):
        from code_impact.analysis.impact import analyze_impact
        graph = _graph({
            "a.js": [],
            "b.js": ["a.js"],
            "c.js": ["a.js", "b.js"],
            "d.js": ["b.js", "c.js"],
            "e.js": ["d.js"],
        })
        l1, l2, affected = analyze_impact(graph, ["a.js"], 2)
        assert l1 & l2 == set()
        assert affected == l1 | l2
        assert "a.js" not in affected
        assert l1 == {"b.js", "c.js"}
        assert l2 == {"d.js"}

    def test_depth_clamped_to_two(self):
        from code_impact.analysis.impact import analyze_impact
        graph = _graph({"a.js": [], "b.js": ["a.js"], "c.js": ["b.js"], "d.js": ["c.js"]})
        _, _, affected = analyze_impact(graph, ["a.js"], 9)
        assert affected == {"b.js", "c.js"}
        l1, l2, _ = analyze_impact(graph, ["a.js"], 1)
        assert (l1, l2) == ({"b.js"}, set())

    def test_count_all_affected_unbounded(self):
        from code_impact.analysis.impact import count_all_affected
        graph = _graph({"a.js": [], "b.js": ["a.js"], "c.js": ["b.js"], "d.js": ["c.js"]})
        assert count_all_affected(graph, "a.js") == 3
        assert count_all_affected(graph, "d.js") == 0
        assert count_all_affected(graph, "unknown.js") == 0

    def test_high_risk_threshold_and_order(self):
        from code_impact.analysis.impact import find_high_risk
        imports = {"hub.js": [], "mid.js": []}
        for i in range(4):
            imports[f"u{i}.js"] = ["hub.js"]
        imports["v0.js"] = ["mid.js"]
        imports["v1.js"] = ["mid.js"]
        graph = _graph(imports)
        risk = find_high_risk(graph, ["mid.js", "hub.js", "v0.js"], threshold=2, top=10)
        assert [(h.file, h.affected_count) for h in risk] == [("hub.js", 4), ("mid.js", 2)]
        assert len(find_high_risk(graph, ["mid.js", "hub.js"], threshold=2, top=1)) == 1

    def test_module_breakdown(self):
        from code_impact.analysis.impact import module_breakdown
        assert module_breakdown(["src/a.js", "src/b.js", "lib/c.js", "top.js"]) == {
            "src": 2, "lib": 1, "(root)": 1,
        }

    def test_report_with_tests_and_ignore(self):
        from code_impact.analysis.impact import build_impact_report
        graph = _graph({
            "core/a.js": [],
            "core/b.js": ["core/a.js"],
            "ui/c.js": ["core/b.js"],
            "gen/d.js": ["core/a.js"],
        })
        lookup = {"core/a.js": ["tests/a.test.js"], "ui/c.js": ["tests/c.test.js", "tests/a.test.js"]}
        result = build_impact_report(graph, ["core/a.js"], 2, test_lookup=lookup, ignore=["gen/**"])
        assert result.changed == ["core/a.js"]
        assert result.l1 == ["core/b.js"]
        assert result.l2 == ["ui/c.js"]
        assert result.module_breakdown == {"core": 1, "ui": 1}
        assert result.test_files == ["tests/a.test.js", "tests/c.test.js"]

        data = result.to_dict()
        assert data["impact"] == {"L1": ["core/b.js"], "L2": ["ui/c.js"], "total": 2}
        assert data["highRisk"] == []

    def test_report_without_lookup_omits_tests(self):
        from code_impact.analysis.impact import build_impact_report
        result = build_impact_report(_chain(), ["a.js"], 2)
        assert result.test_files is None
        assert "testFiles" not in result.to_dict()

    def test_report_records_change_mode(self):
        from code_impact.analysis.impact import build_impact_report
        from code_impact.models import ChangeMode
        assert build_impact_report(_chain(), ["a.js"], 2).to_dict()["mode"] == "explicit"
        result = build_impact_report(_chain(), ["a.js"], 2, mode=ChangeMode.GIT)
        assert result.mode is ChangeMode.GIT
        assert result.to_dict()["mode"] == "git"

    def test_report_warns_on_file_missing_from_graph(self, caplog):
        from code_impact.analysis.impact import build_impact_report
        with caplog.at_level("WARNING", logger="code_impact.analysis.impact"):
            result = build_impact_report(_chain(), ["a.js", "gone.js"], 2)
        assert "not in dep graph: gone.js" in caplog.text
        assert result.l1 == ["b.js"]
        assert result.l2 == ["c.js"]

    def test_report_scoped_root_uses_project_paths(self):
        from code_impact.analysis.impact import build_impact_report
        graph = _graph({"a.js": [], "b.js": ["a.js"]}, root="src")
        result = build_impact_report(graph, ["src/a.js"], 2)
        assert result.l1 == ["src/b.js"]
