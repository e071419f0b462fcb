"""CLI commands for the review gate: review."""

from __future__ import annotations

import click

from trellis.cli_common import echo_json, fail, load_snapshot
from trellis.models import WorkItem
from trellis.review import REVIEW_ACTIONS, REVIEWER_ROLES, ReviewActionError, apply_review_action


@click.command()
@click.argument("file")
@click.option("--action", required=True, type=click.Choice(REVIEW_ACTIONS), help="Review action")
@click.option("--role", required=True, type=click.Choice(REVIEWER_ROLES), help="Role of the acting user")
@click.option("--target-phase", required=True, help="Phase the review gates")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def review(file: str, action: str, role: str, target_phase: str, as_json: bool) -> None:
    """Apply a review ACTION to the work item in FILE ('-' for stdin)."""
    try:
        item = WorkItem.from_dict(load_snapshot(file))
    except ValueError as e:
        fail(str(e), as_json=as_json)

    try:
        result = apply_review_action(item, target_phase, action, role)
    except ReviewActionError as e:
        fail(f"{e} ({e.code})", as_json=as_json, code=e.code)

    if as_json:
        echo_json(result.to_dict())
        return
    click.echo(f"{result.message}: {item.id} -> {target_phase} ({result.previous_status} -> {result.new_status})")
