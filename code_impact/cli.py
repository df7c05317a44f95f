"""Click CLI with graph, stale, impact, and prioritize subcommands."""

from __future__ import annotations

import functools
import json
import logging
import sys
from pathlib import Path

import click

from code_impact import __version__
from code_impact.analysis.changes import detect_changes, resolve_user_paths, split_changed_args
from code_impact.analysis.dependency_graph import (
    DependencyGraphBuilder,
    infer_root_from_include,
    resolve_module_root,
)
from code_impact.analysis.health import analyze_health, check_file
from code_impact.analysis.impact import build_impact_report
from code_impact.analysis.prioritize import RepairPrioritizer
from code_impact.analysis.propagation import propagate, summarize
from code_impact.analysis.test_map import (
    build_test_lookup,
    build_test_to_sources,
    collect_test_files,
    extract_failing_tests,
    normalize_result_path,
)
from code_impact.config import find_project_root, load_scan_config
from code_impact.errors import CodeImpactError, InvalidInputError, MissingArtifactError
from code_impact.git_utils import git_changed_files
from code_impact.models import DEFAULT_IMPACT_DEPTH, DEFAULT_PROPAGATION_DEPTH, ChangeMode
from code_impact.paths import unique_sorted
from code_impact.report import (
    render_file_check,
    render_graph_summary,
    render_health,
    render_impact,
    render_plan,
    render_stale,
)
from code_impact.store import (
    GRAPH_FILENAME,
    TEST_MAP_FILENAME,
    TEST_RESULT_PATH,
    load_graph,
    load_json,
    load_test_map,
    save_graph,
)

MAX_WARNINGS = 50


def _echo_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2))


def _warn_all(messages: list[str]) -> None:
    """Warnings go to stderr so ``--json`` stdout stays parseable."""
    for message in messages[:MAX_WARNINGS]:
        click.echo(f"WARN {message}", err=True)
    if len(messages) > MAX_WARNINGS:
        click.echo(f"WARN ... +{len(messages) - MAX_WARNINGS} more", err=True)


def handle_errors(func):
    """Turn domain errors into a clean message and exit status 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CodeImpactError as e:
            raise click.ClickException(str(e)) from e
    return wrapper


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging on stderr")
def cli(verbose: bool):
    """code-impact: Dependency graph, change impact, and repair ordering for JS projects."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option("--module", "module_dir", help="Scan only this directory")
@click.option("--all", "scan_all", is_flag=True, help="Scan the whole project, ignoring include patterns")
@click.option("--json", "as_json", is_flag=True, help="Machine-readable output")
@click.option("--check", "check_path", help="Show imports and importers of one file")
@click.option("--check-cycles", is_flag=True, help="Exit 1 if module cycles exist")
@click.option("--check-orphans", is_flag=True, help="Exit 1 if orphan files exist")
@click.pass_context
@handle_errors
def graph(
    ctx: click.Context,
    module_dir: str | None,
    scan_all: bool,
    as_json: bool,
    check_path: str | None,
    check_cycles: bool,
    check_orphans: bool,
):
    """Build the dependency graph and save it to the project root."""
    if module_dir and scan_all:
        raise InvalidInputError("--module and --all are mutually exclusive.")

    project_root = find_project_root(Path.cwd())
    config = load_scan_config(project_root)

    # An explicit scope is not narrowed by include patterns
    if module_dir:
        root_rel = resolve_module_root(module_dir, project_root)
        config.include = []
    elif scan_all:
        root_rel = "."
        config.include = []
    else:
        root_rel = infer_root_from_include(config.include)

    result = DependencyGraphBuilder(config).build(project_root, root_rel)
    out_path = project_root / GRAPH_FILENAME
    warnings = list(result.warnings)
    try:
        save_graph(result.graph, out_path)
    except OSError as e:
        # The fresh graph still serves this run
        warnings.append(f"Failed to write {out_path}: {e}")
        out_path = None
    _warn_all(warnings)
    dep_graph = result.graph

    if check_path:
        info = check_file(dep_graph, check_path)
        if info is None:
            raise click.ClickException(f"File not found in graph: {dep_graph.to_graph_key(check_path)}")
        if as_json:
            _echo_json(info)
        else:
            _echo_lines(render_file_check(info))
        return

    if check_cycles or check_orphans:
        health = analyze_health(dep_graph, cycles=check_cycles, orphans=check_orphans)
        if as_json:
            _echo_json(health)
        else:
            _echo_lines(render_health(health))
        if not health["ok"]:
            ctx.exit(1)
        return

    if as_json:
        _echo_json(dep_graph.to_dict())
        return
    _echo_lines(render_graph_summary(dep_graph, str(out_path) if out_path else None))


@cli.command()
@click.argument("paths", nargs=-1)
@click.option("--changed", "-c", multiple=True, help="Changed file (repeatable, comma-separated)")
@click.option("--depth", "-d", type=int, default=DEFAULT_PROPAGATION_DEPTH, show_default=True,
              help="Propagation depth")
@click.option("--tests", "with_tests", is_flag=True, help="List tests to re-run")
@click.option("--json", "as_json", is_flag=True, help="Machine-readable output")
@handle_errors
def stale(paths: tuple[str, ...], changed: tuple[str, ...], depth: int, with_tests: bool, as_json: bool):
    """Find stale files and propagate staleness to their importers.

    Without changed files, every file modified after the graph was built
    is considered changed.
    """
    project_root = find_project_root(Path.cwd())
    dep_graph = load_graph(project_root / GRAPH_FILENAME)

    explicit = split_changed_args(changed) or split_changed_args(paths)
    changes = detect_changes(dep_graph, project_root, explicit)
    result = propagate(dep_graph, changes.keys, depth)

    test_files = None
    if with_tests:
        test_map = load_test_map(project_root / TEST_MAP_FILENAME)
        if test_map is None:
            click.echo(f"WARN missing {project_root / TEST_MAP_FILENAME}", err=True)
            test_files = []
        else:
            affected = [dep_graph.to_project_path(k) for k in changes.keys]
            affected += [dep_graph.to_project_path(r.file) for r in result.propagated]
            test_files = collect_test_files(build_test_lookup(test_map), affected)

    if as_json:
        out = {
            "directStale": [r.to_dict() for r in changes.direct],
            "propagatedStale": [r.to_dict() for r in result.propagated],
            "summary": summarize(changes.direct, result),
        }
        if test_files is not None:
            out["testsToRun"] = test_files
        _echo_json(out)
        return
    _echo_lines(render_stale(changes, result, test_files))


@cli.command()
@click.argument("files", nargs=-1)
@click.option("--since", help="Changed files from git diff against this revision")
@click.option("--staged", is_flag=True, help="Changed files from the git index")
@click.option("--depth", "-d", type=click.IntRange(0, 2, clamp=True), default=DEFAULT_IMPACT_DEPTH,
              show_default=True, help="Impact depth (0-2)")
@click.option("--ignore", "ignore", help="Comma-separated globs to leave out")
@click.option("--json", "as_json", is_flag=True, help="Machine-readable output")
@handle_errors
def impact(
    files: tuple[str, ...],
    since: str | None,
    staged: bool,
    depth: int,
    ignore: str | None,
    as_json: bool,
):
    """Show which files a change affects, in two tiers."""
    if since and staged:
        raise InvalidInputError("--since and --staged are mutually exclusive.")

    cwd = Path.cwd()
    project_root = find_project_root(cwd)

    if since or staged:
        changed = git_changed_files(project_root, since=since, staged=staged)
    else:
        changed = resolve_user_paths(project_root, cwd, files)
    changed = unique_sorted(changed)

    if not changed:
        raise click.ClickException("No changed files found. Provide file paths or use --since/--staged.")

    patterns = split_changed_args([ignore]) if ignore else []
    dep_graph = load_graph(project_root / GRAPH_FILENAME)
    test_map = load_test_map(project_root / TEST_MAP_FILENAME)

    result = build_impact_report(
        dep_graph,
        changed,
        depth,
        test_lookup=build_test_lookup(test_map) if test_map is not None else None,
        ignore=patterns,
        mode=ChangeMode.GIT if since or staged else ChangeMode.EXPLICIT,
    )
    if not result.changed:
        raise click.ClickException("No changed files found (all were filtered by --ignore).")

    if as_json:
        _echo_json(result.to_dict())
        return
    _echo_lines(render_impact(result))


@cli.command()
@click.option("--failing", "-f", multiple=True, help="Failing test file (repeatable, comma-separated)")
@click.option("--from-file", "from_file", type=click.Path(path_type=Path),
              help="Test result JSON (cached errors or jest/vitest reporter output)")
@click.option("--json", "as_json", is_flag=True, help="Machine-readable output")
@handle_errors
def prioritize(failing: tuple[str, ...], from_file: Path | None, as_json: bool):
    """Order source files implicated by failing tests for repair."""
    project_root = find_project_root(Path.cwd())
    dep_graph = load_graph(project_root / GRAPH_FILENAME)

    fallback: dict[str, set[str]] = {}
    explicit = split_changed_args(failing)
    if explicit:
        failing_tests = unique_sorted(
            p for p in (normalize_result_path(t, project_root) for t in explicit) if p
        )
    else:
        result_path = from_file.resolve() if from_file else project_root / TEST_RESULT_PATH
        if not result_path.exists():
            raise MissingArtifactError(
                result_path,
                "Save a test run first, or use --from-file <result.json> / --failing <test>.",
            )
        failing_tests, fallback = extract_failing_tests(load_json(result_path), project_root)

    test_map = load_test_map(project_root / TEST_MAP_FILENAME)
    test_to_sources = build_test_to_sources(test_map) if test_map is not None else fallback

    plan = RepairPrioritizer(dep_graph, test_to_sources).plan(failing_tests)
    if as_json:
        _echo_json(plan.to_dict())
        return
    _echo_lines(render_plan(plan))
