"""Data models for the code-impact engine."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from code_impact.paths import normalize_rel, to_graph_key, to_project_rel

GRAPH_VERSION = 1

DEFAULT_PROPAGATION_DEPTH = 2
MAX_PROPAGATION_DEPTH = 25  # guard against runaway fan-out
DEFAULT_IMPACT_DEPTH = 2
MAX_IMPACT_DEPTH = 2
DEFAULT_RISK_THRESHOLD = 50
DEFAULT_RISK_TOP = 10

DEFAULT_SKIP_DIRS = [
    "node_modules", ".git", "dist", "build", ".next", "__pycache__",
    "venv", ".venv", "target", "vendor", ".cache", "coverage",
    ".turbo", ".nuxt", ".output", "out", ".project-index",
]


class EdgeDirection(enum.Enum):
    IMPORTS = "imports"
    IMPORTED_BY = "importedBy"


class ChangeMode(enum.Enum):
    EXPLICIT = "explicit"
    AUTOMATIC = "automatic"
    GIT = "git"


class RepairPhase(enum.Enum):
    ROOT_CAUSES = "rootCauses"
    INDEPENDENT = "independent"
    LEAF_NODES = "leafNodes"


def _isoformat(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


# ── Graph ────────────────────────────────────────────────────


@dataclass
class FileNode:
    imports: list[str] = field(default_factory=list)
    imported_by: list[str] = field(default_factory=list)
    exports: list[str] = field(default_factory=list)

    def edges(self, direction: EdgeDirection) -> list[str]:
        if direction is EdgeDirection.IMPORTS:
            return self.imports
        return self.imported_by

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "imports": list(self.imports),
            "importedBy": list(self.imported_by),
            "exports": list(self.exports),
        }


@dataclass
class ModuleStats:
    files: int = 0
    in_degree: int = 0
    out_degree: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"files": self.files, "inDegree": self.in_degree, "outDegree": self.out_degree}


@dataclass
class DependencyGraph:
    """File/module-level dependency graph rooted at ``root``.

    ``files`` maps graph keys (paths relative to ``root``) to nodes. The
    reverse index (``imported_by``) always mirrors ``imports``. Instances
    are never mutated after the builder returns them.
    """
    root: str = "."
    generated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    files: dict[str, FileNode] = field(default_factory=dict)
    modules: dict[str, ModuleStats] = field(default_factory=dict)
    cycles: list[list[str]] = field(default_factory=list)
    version: int = GRAPH_VERSION

    def node(self, key: str) -> FileNode | None:
        return self.files.get(key)

    def neighbors(self, key: str, direction: EdgeDirection) -> list[str]:
        node = self.files.get(key)
        if node is None:
            return []
        return node.edges(direction)

    def importers(self, key: str) -> list[str]:
        return self.neighbors(key, EdgeDirection.IMPORTED_BY)

    def to_graph_key(self, path: str) -> str:
        return to_graph_key(path, self.root)

    def to_project_path(self, key: str) -> str:
        return to_project_rel(key, self.root)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "generated": _isoformat(self.generated),
            "root": normalize_rel(self.root),
            "files": {key: self.files[key].to_dict() for key in sorted(self.files)},
            "modules": {name: self.modules[name].to_dict() for name in sorted(self.modules)},
            "cycles": [list(c) for c in self.cycles],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DependencyGraph:
        files = {
            normalize_rel(key): FileNode(
                imports=sorted({normalize_rel(p) for p in node.get("imports", [])}),
                imported_by=sorted({normalize_rel(p) for p in node.get("importedBy", [])}),
                exports=sorted(set(node.get("exports", []))),
            )
            for key, node in data.get("files", {}).items()
        }
        modules = {
            name: ModuleStats(
                files=stats.get("files", 0),
                in_degree=stats.get("inDegree", 0),
                out_degree=stats.get("outDegree", 0),
            )
            for name, stats in data.get("modules", {}).items()
        }
        return cls(
            root=normalize_rel(data.get("root") or "."),
            generated=parse_timestamp(data["generated"]),
            files=files,
            modules=modules,
            cycles=[list(c) for c in data.get("cycles", [])],
            version=data.get("version", GRAPH_VERSION),
        )


@dataclass
class BuildResult:
    graph: DependencyGraph
    warnings: list[str] = field(default_factory=list)


# ── Change detection / propagation ───────────────────────────


@dataclass
class StaleRecord:
    file: str
    mtime: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "mtime": _isoformat(self.mtime) if self.mtime else None}


@dataclass
class PropagatedRecord:
    file: str
    level: int
    source: str  # immediate upstream cause

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "level": self.level, "source": self.source}


@dataclass
class ChangeSet:
    mode: ChangeMode
    direct: list[StaleRecord] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    @property
    def keys(self) -> list[str]:
        return [r.file for r in self.direct]


@dataclass
class PropagationResult:
    propagated: list[PropagatedRecord] = field(default_factory=list)
    level_counts: dict[int, int] = field(default_factory=dict)


# ── Impact ───────────────────────────────────────────────────


@dataclass
class HighRiskItem:
    file: str
    affected_count: int

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "affectedCount": self.affected_count}


@dataclass
class ImpactResult:
    changed: list[str]
    l1: list[str] = field(default_factory=list)
    l2: list[str] = field(default_factory=list)
    high_risk: list[HighRiskItem] = field(default_factory=list)
    module_breakdown: dict[str, int] = field(default_factory=dict)
    test_files: list[str] | None = None
    mode: ChangeMode = ChangeMode.EXPLICIT

    @property
    def affected(self) -> list[str]:
        return sorted(set(self.l1) | set(self.l2))

    @property
    def total(self) -> int:
        return len(self.affected)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "mode": self.mode.value,
            "changed": list(self.changed),
            "impact": {"L1": list(self.l1), "L2": list(self.l2), "total": self.total},
            "highRisk": [h.to_dict() for h in self.high_risk],
            "moduleBreakdown": dict(self.module_breakdown),
        }
        if self.test_files is not None:
            out["testFiles"] = list(self.test_files)
        return out


# ── Repair prioritization ────────────────────────────────────


@dataclass
class Candidate:
    file: str  # project-relative
    key: str   # graph key
    dependents: int = 0
    failing_tests: list[str] = field(default_factory=list)
    potential: set[str] = field(default_factory=set)

    @property
    def potential_fixes(self) -> int:
        return len(self.potential)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "dependents": self.dependents,
            "failingTests": list(self.failing_tests),
            "potentialFixes": self.potential_fixes,
        }


@dataclass
class RepairBatch:
    files: list[tuple[str, int]] = field(default_factory=list)  # (file, failing test count)
    tests: int = 0


@dataclass
class RepairPlan:
    total_failing: int
    source_files: int
    root_causes: list[Candidate] = field(default_factory=list)
    batches: list[RepairBatch] = field(default_factory=list)
    leaf_nodes: list[tuple[str, int]] = field(default_factory=list)
    suggested_order: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        if self.total_failing == 0:
            return {"totalFailing": 0, "sourceFiles": 0, "phases": [], "suggestedOrder": []}
        return {
            "totalFailing": self.total_failing,
            "sourceFiles": self.source_files,
            "phases": [
                {
                    "name": RepairPhase.ROOT_CAUSES.value,
                    "description": "Fix these first - highest impact",
                    "items": [c.to_dict() for c in self.root_causes],
                },
                {
                    "name": RepairPhase.INDEPENDENT.value,
                    "description": "Can fix in parallel",
                    "batches": [
                        {"files": [f for f, _ in b.files], "tests": b.tests}
                        for b in self.batches
                    ],
                },
                {
                    "name": RepairPhase.LEAF_NODES.value,
                    "description": "Fix last",
                    "items": [{"file": f, "tests": n} for f, n in self.leaf_nodes],
                },
            ],
            "suggestedOrder": list(self.suggested_order),
        }


# ── Configuration ────────────────────────────────────────────


@dataclass
class ScanConfig:
    """Configuration for graph construction."""
    include: list[str] = field(default_factory=list)
    ignore: list[str] = field(default_factory=list)
    skip_dirs: list[str] = field(default_factory=lambda: list(DEFAULT_SKIP_DIRS))
    extensions: tuple[str, ...] = (".js",)


@dataclass
class PrioritizeConfig:
    """Root-cause selection thresholds."""
    coverage_target: float = 0.7
    max_items: int = 8
    min_items: int = 2
    sample_fraction: float = 0.25


@dataclass
class ScannedFile:
    """Result from the scanner stage: raw specifiers and exported names of one file."""
    specifiers: list[str] = field(default_factory=list)
    exports: list[str] = field(default_factory=list)
