"""Tests for artifact persistence, config loading, test maps and git discovery."""

import json
import shutil
import subprocess
from pathlib import Path

import pytest

from code_impact.errors import GitError, InvalidInputError, MalformedArtifactError, MissingArtifactError
from code_impact.models import DependencyGraph, FileNode

FIXTURES = Path(__file__).parent / "fixtures"

TEST_MAP = {
    "version": 1,
    "modules": {
        "core": {
            "files": {
                "a": {"path": "core/a.js", "status": "covered", "tests": ["tests/a.test.js", "./tests/shared.test.js"]},
                "b": {"path": "core/b.js", "tests": ["tests/shared.test.js"]},
            }
        },
        "empty": {"files": {}},
    },
}


def _write(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data) if not isinstance(data, str) else data)
    return path


# ── Graph artifact ────────────────────────────────────────────

class TestGraphStore:
    def test_save_and_load(self, tmp_path):
        from code_impact.store import load_graph, save_graph
        graph = DependencyGraph(files={"a.js": FileNode(imported_by=["b.js"]), "b.js": FileNode(imports=["a.js"])})
        path = save_graph(graph, tmp_path / ".dep-graph.json")
        assert path.read_text().endswith("\n")
        loaded = load_graph(path)
        assert loaded.files["a.js"].imported_by == ["b.js"]
        assert loaded.to_dict() == graph.to_dict()

    def test_missing_graph(self, tmp_path):
        from code_impact.store import load_graph
        with pytest.raises(MissingArtifactError) as exc:
            load_graph(tmp_path / ".dep-graph.json")
        assert "code-impact graph" in str(exc.value)

    @pytest.mark.parametrize("content", [
        "{not json",
        {"version": 2, "generated": "2024-01-01T00:00:00Z", "root": ".", "files": {}},
        {"version": 1, "generated": "2024-01-01T00:00:00Z", "root": "."},
        {"version": 1, "generated": "yesterday", "root": ".", "files": {}},
        [],
    ])
    def test_malformed_graph(self, tmp_path, content):
        from code_impact.store import load_graph
        path = _write(tmp_path / ".dep-graph.json", content)
        with pytest.raises(MalformedArtifactError):
            load_graph(path)


# ── Test map ──────────────────────────────────────────────────

class TestTestMap:
    def test_optional_map_absent(self, tmp_path):
        from code_impact.store import load_test_map
        assert load_test_map(tmp_path / ".test-map.json") is None
        with pytest.raises(MissingArtifactError):
            load_test_map(tmp_path / ".test-map.json", required=True)

    def test_lookups(self, tmp_path):
        from code_impact.analysis.test_map import build_test_lookup, build_test_to_sources, collect_test_files
        from code_impact.store import load_test_map
        test_map = load_test_map(_write(tmp_path / ".test-map.json", TEST_MAP))

        lookup = build_test_lookup(test_map)
        assert lookup == {
            "core/a.js": ["tests/a.test.js", "tests/shared.test.js"],
            "core/b.js": ["tests/shared.test.js"],
        }
        assert build_test_to_sources(test_map) == {
            "tests/a.test.js": {"core/a.js"},
            "tests/shared.test.js": {"core/a.js", "core/b.js"},
        }
        assert collect_test_files(lookup, ["./core/b.js", "core/zzz.js"]) == ["tests/shared.test.js"]

    def test_malformed_map(self, tmp_path):
        from code_impact.store import load_test_map
        path = _write(tmp_path / ".test-map.json", {"modules": {"core": {"files": {"a": {"tests": []}}}}})
        with pytest.raises(MalformedArtifactError):
            load_test_map(path)


class TestExtractFailingTests:
    def test_cached_errors_format(self, tmp_path):
        from code_impact.analysis.test_map import extract_failing_tests
        doc = {"errors": [
            {"testFile": str(tmp_path / "tests" / "a.test.js"), "sourceFile": "core/a.js"},
            {"testFile": "tests/a.test.js", "sourceFile": str(tmp_path / "core" / "b.js")},
            {"testFile": "tests/c.test.js"},
            {"testFile": "/elsewhere/x.test.js", "sourceFile": "core/x.js"},
        ]}
        failing, fallback = extract_failing_tests(doc, tmp_path)
        assert failing == ["tests/a.test.js", "tests/c.test.js"]
        assert fallback == {"tests/a.test.js": {"core/a.js", "core/b.js"}}

    def test_reporter_format(self, tmp_path):
        from code_impact.analysis.test_map import extract_failing_tests
        doc = {"testResults": [
            {"name": str(tmp_path / "tests" / "a.test.js"),
             "assertionResults": [{"status": "passed"}, {"status": "failed"}]},
            {"name": "tests/b.test.js", "assertionResults": [{"status": "passed"}]},
            {"file": "tests/c.test.js", "numFailingTests": 2},
            {"path": "tests/d.test.js", "status": "FAIL"},
            {"name": "tests/e.test.js", "status": "passed"},
        ]}
        failing, fallback = extract_failing_tests(doc, tmp_path)
        assert failing == ["tests/a.test.js", "tests/c.test.js", "tests/d.test.js"]
        assert fallback == {}

    def test_unexpected_document(self, tmp_path):
        from code_impact.analysis.test_map import extract_failing_tests
        assert extract_failing_tests(None, tmp_path) == ([], {})
        assert extract_failing_tests({"other": 1}, tmp_path) == ([], {})


# ── Config ────────────────────────────────────────────────────

class TestConfig:
    def test_defaults_without_file(self, tmp_path):
        from code_impact.config import load_scan_config
        config = load_scan_config(tmp_path)
        assert config.include == []
        assert "node_modules" in config.skip_dirs
        assert config.extensions == (".js",)

    def test_project_index_config_preferred(self, tmp_path):
        from code_impact.config import load_scan_config
        _write(tmp_path / ".project-index" / ".stale-config.json",
               {"include": ["js/**"], "ignore": ["js/vendor/**"], "extensions": ["mjs", ".js"]})
        _write(tmp_path / ".stale-config.json", {"include": ["other/**"]})
        config = load_scan_config(tmp_path)
        assert config.include == ["js/**"]
        assert config.ignore == ["js/vendor/**"]
        assert config.extensions == (".mjs", ".js")

    def test_invalid_config_falls_back(self, tmp_path, caplog):
        from code_impact.config import load_scan_config
        _write(tmp_path / ".project-index" / ".stale-config.json", {"include": "not-a-list"})
        _write(tmp_path / ".stale-config.json", {"ignore": ["dist"]})
        config = load_scan_config(tmp_path)
        assert config.ignore == ["dist"]
        assert "ignoring invalid config" in caplog.text

    def test_find_project_root(self, tmp_path):
        from code_impact.config import find_project_root
        (tmp_path / "package.json").write_text("{}")
        nested = tmp_path / "src" / "deep"
        nested.mkdir(parents=True)
        assert find_project_root(nested) == tmp_path.resolve()


# ── Git ───────────────────────────────────────────────────────

def _git(cwd, *args):
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


class TestGitChangedFiles:
    def test_since_and_staged_exclusive(self, tmp_path):
        from code_impact.git_utils import git_changed_files
        with pytest.raises(InvalidInputError):
            git_changed_files(tmp_path, since="HEAD~1", staged=True)

    @pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
    def test_outside_repository(self, tmp_path):
        from code_impact.git_utils import git_changed_files
        with pytest.raises(GitError):
            git_changed_files(tmp_path, since="HEAD")

    @pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
    def test_working_tree_and_staged(self, tmp_path):
        from code_impact.git_utils import git_changed_files
        _git(tmp_path, "init", "-q")
        _git(tmp_path, "config", "user.email", "dev@example.com")
        _git(tmp_path, "config", "user.name", "Dev")
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "a.js").write_text("export const a = 1;\n")
        (tmp_path / "src" / "b.js").write_text("export const b = 1;\n")
        _git(tmp_path, "add", ".")
        _git(tmp_path, "commit", "-q", "-m", "init")

        (tmp_path / "src" / "a.js").write_text("export const a = 2;\n")
        (tmp_path / "src" / "b.js").write_text("export const b = 2;\n")
        _git(tmp_path, "add", "src/b.js")

        assert git_changed_files(tmp_path) == ["src/a.js", "src/b.js"]
        assert git_changed_files(tmp_path, staged=True) == ["src/b.js"]
        assert git_changed_files(tmp_path, since="HEAD") == ["src/a.js", "src/b.js"]
