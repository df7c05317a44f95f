"""Human-readable renderers for graph, staleness, impact and repair results.

Each renderer returns a list of lines; the CLI echoes them. Colour is added
with ``click.style`` and stripped by ``click.echo`` when not on a terminal.
"""

from __future__ import annotations

import click

from code_impact.models import (
    ChangeSet,
    DependencyGraph,
    ImpactResult,
    PropagationResult,
    RepairPlan,
)


def _heading(text: str) -> str:
    return click.style(text, bold=True)


def _none_or(items: list[str], indent: str = "  ") -> list[str]:
    return items if items else [f"{indent}(none)"]


def render_graph_summary(graph: DependencyGraph, output_path: str | None = None) -> list[str]:
    edges = sum(len(n.imports) for n in graph.files.values())
    lines = [
        _heading("=== Dependency Graph ==="),
        f"Root: {graph.root}",
        f"Files: {len(graph.files)}  Edges: {edges}  Modules: {len(graph.modules)}",
    ]
    if graph.modules:
        lines.append("")
        lines.append("Modules:")
        for name, stats in graph.modules.items():
            lines.append(f"  {name:<24} files={stats.files:<4} in={stats.in_degree:<3} out={stats.out_degree}")
    lines.append("")
    if graph.cycles:
        lines.append(click.style(f"Cycles ({len(graph.cycles)}):", fg="yellow"))
        for cycle in graph.cycles:
            lines.append("  " + " -> ".join(cycle + cycle[:1]))
    else:
        lines.append("No module cycles.")
    if output_path:
        lines.append("")
        lines.append(f"Saved: {output_path}")
    return lines


def render_file_check(info: dict) -> list[str]:
    lines = [click.style(info["file"], fg="cyan")]
    for label, key in (("imports", "imports"), ("imported by", "importedBy"), ("exports", "exports")):
        values = info.get(key) or []
        lines.append(f"  {label} ({len(values)}):")
        lines.extend(_none_or([f"    {v}" for v in values], "    "))
    return lines


def render_health(health: dict) -> list[str]:
    lines = [_heading("=== Graph Health ===")]
    if "cycles" in health:
        cycles = health["cycles"]
        lines.append(f"Cycles: {len(cycles)}")
        lines.extend("  " + " -> ".join(c + c[:1]) for c in cycles)
    if "orphans" in health:
        orphans = health["orphans"]
        lines.append(f"Orphans: {len(orphans)}")
        lines.extend(f"  {o}" for o in orphans)
    status = click.style("OK", fg="green") if health["ok"] else click.style("PROBLEMS FOUND", fg="red")
    lines.append(f"Status: {status}")
    return lines


def render_stale(
    changes: ChangeSet,
    result: PropagationResult,
    test_files: list[str] | None = None,
) -> list[str]:
    lines = [_heading("=== Stale Files ==="), f"Mode: {changes.mode.value}", ""]

    lines.append(f"Direct ({len(changes.direct)}):")
    lines.extend(_none_or([f"  {r.file}" for r in changes.direct]))

    lines.append("")
    lines.append(f"Propagated ({len(result.propagated)}):")
    lines.extend(_none_or([f"  L{r.level} {r.file} <- {r.source}" for r in result.propagated]))

    if changes.missing:
        lines.append("")
        lines.append(click.style(f"Not in graph ({len(changes.missing)}):", fg="yellow"))
        lines.extend(f"  {m}" for m in changes.missing)

    if test_files is not None:
        lines.append("")
        lines.append(f"Tests to re-run ({len(test_files)}):")
        lines.extend(_none_or([f"  {t}" for t in test_files]))
    return lines


def render_impact(result: ImpactResult) -> list[str]:
    lines = [_heading("=== Impact Analysis ==="), f"Mode: {result.mode.value}"]
    lines.append(f"Changed ({len(result.changed)}):")
    lines.extend(f"  {f}" for f in result.changed)

    lines.append("")
    lines.append(f"L1 direct importers ({len(result.l1)}):")
    lines.extend(_none_or([f"  {f}" for f in result.l1]))
    lines.append(f"L2 transitive importers ({len(result.l2)}):")
    lines.extend(_none_or([f"  {f}" for f in result.l2]))
    lines.append(f"Total affected: {result.total}")

    if result.high_risk:
        lines.append("")
        lines.append(click.style("High-risk changes:", fg="red"))
        lines.extend(f"  {h.file} ({h.affected_count} files downstream)" for h in result.high_risk)

    if result.module_breakdown:
        lines.append("")
        lines.append("By module:")
        for name, count in sorted(result.module_breakdown.items(), key=lambda kv: (-kv[1], kv[0])):
            lines.append(f"  {name}: {count}")

    if result.test_files is not None:
        lines.append("")
        lines.append(f"Tests to run ({len(result.test_files)}):")
        lines.extend(_none_or([f"  {t}" for t in result.test_files]))
    return lines


def render_plan(plan: RepairPlan) -> list[str]:
    if plan.total_failing == 0:
        return ["No failing tests detected."]

    lines = [
        _heading("=== Test Repair Priority ==="),
        f"Total failing: {plan.total_failing} tests",
        f"Source files involved: {plan.source_files} files",
        "",
        "Phase 1 - Root causes (fix these first):",
    ]
    if not plan.root_causes:
        lines.append("  (none)")
    for i, c in enumerate(plan.root_causes, 1):
        lines.append(f"  Priority {i}: {click.style(c.file, fg='cyan')}")
        lines.append(f"    - {c.dependents} dependent file(s)")
        lines.append(f"    - {len(c.failing_tests)} failing test(s) mapped")
        lines.append(f"    - may resolve {c.potential_fixes} test(s)")

    lines.append("")
    lines.append("Phase 2 - Independent (can fix in parallel):")
    if not plan.batches:
        lines.append("  (none)")
    for i, batch in enumerate(plan.batches, 1):
        header = "no deps between them" if i == 1 else f"depends on batch {i - 1}"
        lines.append(f"  Batch {i} ({header}):")
        lines.extend(f"    - {f} ({n} tests)" for f, n in batch.files)

    lines.append("")
    lines.append("Phase 3 - Leaf nodes (fix last):")
    lines.extend(_none_or([f"  - {f} ({n} test{'' if n == 1 else 's'})" for f, n in plan.leaf_nodes]))

    lines.append("")
    lines.append("Suggested order:")
    lines.extend(f"  {i}. {f}" for i, f in enumerate(plan.suggested_order, 1))
    return lines
