"""CLI commands for dependency analysis: analyze."""

from __future__ import annotations

import sys

import click

from trellis.analysis import DependencyHealthReport, analyze_graph, analyze_workspaces
from trellis.cli_common import echo_json, fail, get_settings, load_snapshot


def _print_report(label: str, report: DependencyHealthReport) -> None:
    click.echo(f"{label}: health {report.health_score}/100")
    for cycle in report.cycles:
        fix = cycle.suggested_fix
        click.echo(f"  cycle [{cycle.severity}]: {' -> '.join(cycle.cycle)} -> {cycle.cycle[0]}")
        click.echo(f"    fix: remove {fix.connection_id} ({fix.reason})")
    if report.critical_path is None:
        click.echo(f"  critical path: skipped ({report.critical_path_skip_reason})")
    elif report.critical_path.critical_path:
        cp = report.critical_path
        click.echo(f"  critical path ({cp.total_duration:g}h): {' -> '.join(cp.critical_path)}")
        for alt in cp.alternate_paths:
            click.echo(f"    also critical: {' -> '.join(alt)}")
    for b in report.bottlenecks:
        click.echo(
            f"  bottleneck: {b.work_item_id} score {b.weighted_score:g} "
            f"(deps {b.dependency_count}, dependents {b.dependent_count})"
        )
    if report.orphaned_work_items:
        click.echo(f"  orphans: {', '.join(report.orphaned_work_items)}")
    for conflict in report.conflicts:
        click.echo(f"  conflict: {conflict.work_item_id} <-> {', '.join(conflict.conflict_with)}")
    for issue in report.input_issues:
        click.echo(f"  input issue ({issue.kind}): {issue.message}", err=True)


@click.command()
@click.argument("file")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def analyze(file: str, as_json: bool) -> None:
    """Analyze the dependency graph in FILE ('-' for stdin).

    FILE holds ``{"nodes": [...], "edges": [...]}``, or
    ``{"workspaces": {"<name>": {"nodes": ..., "edges": ...}}}`` to analyze
    several independent workspaces at once.
    """
    settings = get_settings()
    data = load_snapshot(file)
    if not isinstance(data, dict):
        fail("Snapshot must be a JSON object", as_json=as_json)

    workspaces = data.get("workspaces")
    if workspaces is not None:
        if not isinstance(workspaces, dict) or not all(isinstance(w, dict) for w in workspaces.values()):
            fail("workspaces must map names to {nodes, edges} objects", as_json=as_json)
        reports = analyze_workspaces(workspaces, settings=settings.analysis)
        if as_json:
            echo_json({name: r.to_dict() for name, r in reports.items()})
            return
        for name, report in reports.items():
            _print_report(name, report)
        return

    nodes = data.get("nodes") or []
    edges = data.get("edges") or []
    if not isinstance(nodes, list) or not isinstance(edges, list):
        fail("nodes and edges must be JSON arrays", as_json=as_json)
    report = analyze_graph(nodes, edges, settings=settings.analysis)
    if as_json:
        echo_json(report.to_dict())
        return
    _print_report("workspace", report)
    if report.cycles:
        sys.exit(1)
