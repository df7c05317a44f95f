"""Reading and writing the JSON artifacts the engine works on."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from code_impact.errors import MalformedArtifactError, MissingArtifactError
from code_impact.models import DependencyGraph

GRAPH_FILENAME = ".dep-graph.json"
TEST_MAP_FILENAME = ".test-map.json"
TEST_RESULT_PATH = Path(".project-index") / ".test-result.json"

GRAPH_HINT = "Generate it first: code-impact graph"


# ── Artifact schemas ─────────────────────────────────────────


class FileNodeDocument(BaseModel):
    imports: list[str] = []
    imported_by: list[str] = Field(default=[], alias="importedBy")
    exports: list[str] = []


class ModuleStatsDocument(BaseModel):
    files: int = 0
    in_degree: int = Field(default=0, alias="inDegree")
    out_degree: int = Field(default=0, alias="outDegree")


class GraphDocument(BaseModel):
    version: Literal[1]
    generated: str
    root: str = "."
    files: dict[str, FileNodeDocument]
    modules: dict[str, ModuleStatsDocument] = {}
    cycles: list[list[str]] = []


class SourceTestEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    path: str
    tests: list[str] = []


class SourceTestModule(BaseModel):
    model_config = ConfigDict(extra="allow")

    files: dict[str, SourceTestEntry] = {}


class SourceTestMap(BaseModel):
    """Source-to-test mapping produced by the test mapper."""
    model_config = ConfigDict(extra="allow")

    version: int = 1
    modules: dict[str, SourceTestModule] = {}


# ── I/O ──────────────────────────────────────────────────────


def load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise MissingArtifactError(path) from None
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedArtifactError(path, str(e)) from e


def write_json(path: Path, data: Any) -> Path:
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    return path


def save_graph(graph: DependencyGraph, path: Path) -> Path:
    return write_json(path, graph.to_dict())


def load_graph(path: Path) -> DependencyGraph:
    """Load and validate a persisted dependency graph."""
    if not path.exists():
        raise MissingArtifactError(path, GRAPH_HINT)
    raw = load_json(path)
    try:
        GraphDocument.model_validate(raw)
        return DependencyGraph.from_dict(raw)
    except ValidationError as e:
        raise MalformedArtifactError(path, _first_error(e)) from e
    except ValueError as e:  # unparseable "generated" timestamp
        raise MalformedArtifactError(path, str(e)) from e


def load_test_map(path: Path, required: bool = False) -> SourceTestMap | None:
    """Load the source-to-test mapping; ``None`` when absent and optional."""
    if not path.exists():
        if required:
            raise MissingArtifactError(path, "Generate it first with the test mapper.")
        return None
    raw = load_json(path)
    try:
        return SourceTestMap.model_validate(raw)
    except ValidationError as e:
        raise MalformedArtifactError(path, _first_error(e)) from e


def _first_error(e: ValidationError) -> str:
    errors = e.errors()
    if not errors:
        return str(e)
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    return f"{loc}: {first.get('msg', 'invalid')}" if loc else first.get("msg", "invalid")
