"""CLI commands for the phase model: phases, migrate-phase, readiness, transition."""

from __future__ import annotations

import sys
from typing import Any

import click

from trellis.cli_common import echo_json, fail, get_settings, load_snapshot
from trellis.models import WorkItem
from trellis.phases import WorkItemType, get_phase_set, migrate_legacy_phase, parse_work_item_type
from trellis.readiness import ReadinessResult, calculate_readiness_batch, readiness_for_item
from trellis.transitions import decide_transition


def _parse_item(raw: Any, *, as_json: bool) -> WorkItem:
    try:
        return WorkItem.from_dict(raw)
    except ValueError as e:
        fail(str(e), as_json=as_json)


def _print_readiness(label: str, result: ReadinessResult) -> None:
    if result.is_terminal:
        click.echo(f"{label}: {result.current_phase} (terminal)")
        return
    status = "ready" if result.can_upgrade else "not ready"
    click.echo(f"{label}: {result.current_phase} -> {result.next_phase}  {result.readiness_percent}% ({status})")
    click.echo(f"  required {result.required_percent:g}%  optional {result.optional_percent:g}%")
    for missing in result.missing_fields:
        click.echo(f"  missing: {missing.label} - {missing.hint}")
    for warning in result.warnings:
        click.echo(f"  warning: {warning}")
    for suggestion in result.suggestions:
        click.echo(f"  > {suggestion}")


@click.command()
@click.argument("type_name", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def phases(type_name: str | None, as_json: bool) -> None:
    """Show phase sets (all types, or one TYPE)."""
    try:
        types = [parse_work_item_type(type_name)] if type_name else list(WorkItemType)
    except ValueError as e:
        fail(str(e), as_json=as_json)

    if as_json:
        data = {}
        for wt in types:
            ps = get_phase_set(wt)
            data[wt.value] = {
                "phases": list(ps.phases),
                "order": list(ps.order),
                "terminals": sorted(ps.terminals),
                "initial": ps.initial,
            }
        echo_json(data)
        return

    for wt in types:
        ps = get_phase_set(wt)
        steps = " -> ".join(f"{p}*" if p in ps.terminals else p for p in ps.order)
        extra = f"  (also: {', '.join(f'{p}*' for p in ps.side_exits)})" if ps.side_exits else ""
        click.echo(f"{wt.value:<8} {steps}{extra}")


@click.command("migrate-phase")
@click.argument("type_name")
@click.argument("phase")
def migrate_phase(type_name: str, phase: str) -> None:
    """Map a legacy PHASE label onto the current phases of TYPE."""
    try:
        click.echo(migrate_legacy_phase(type_name, phase))
    except ValueError as e:
        fail(str(e))


@click.command()
@click.argument("file")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def readiness(file: str, as_json: bool) -> None:
    """Score readiness for the work item(s) in FILE ('-' for stdin).

    FILE holds one work item object, or a list of them.
    """
    settings = get_settings()
    data = load_snapshot(file)

    if isinstance(data, list):
        batch = calculate_readiness_batch(data, settings=settings.readiness)
        if as_json:
            echo_json(batch.to_dict())
        else:
            for item_id, result in sorted(batch.results.items()):
                _print_readiness(item_id, result)
            for item_id, error in sorted(batch.errors.items()):
                click.echo(f"{item_id}: error: {error}", err=True)
        if batch.errors:
            sys.exit(1)
        return

    item = _parse_item(data, as_json=as_json)
    try:
        result = readiness_for_item(item, settings=settings.readiness)
    except ValueError as e:
        fail(str(e), as_json=as_json)
    if as_json:
        echo_json(result.to_dict())
        return
    _print_readiness(item.id, result)


@click.command()
@click.argument("file")
@click.argument("to_phase")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def transition(file: str, to_phase: str, as_json: bool) -> None:
    """Decide whether the work item in FILE may move to TO_PHASE."""
    settings = get_settings()
    item = _parse_item(load_snapshot(file), as_json=as_json)
    decision = decide_transition(item, to_phase, settings=settings.readiness)

    if as_json:
        echo_json(decision.to_dict())
    else:
        verdict = "allowed" if decision.allowed else f"blocked ({decision.reason})"
        click.echo(f"{item.id}: {decision.from_phase} -> {decision.to_phase} {verdict}")
        click.echo(f"  {decision.message}")
        for blocker in decision.review_blockers:
            click.echo(f"  review: {blocker}")
    if not decision.allowed:
        sys.exit(1)
