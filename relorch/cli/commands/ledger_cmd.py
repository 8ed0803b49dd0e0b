from __future__ import annotations

import json

import typer

from relorch.cli.commands._helpers import open_ledger
from relorch.cli.context import build_context
from relorch.output.console import Style
from relorch.release.ledger import record_to_dict


def ledger(
    branch: str | None = typer.Option(None, "--branch", "-b", help="Only this branch"),
    as_json: bool = typer.Option(False, "--json", help="Print records as JSON"),
) -> None:
    """List cut releases, oldest first."""
    ctx = build_context()
    store = open_ledger(ctx)
    records = store.records(branch)

    if as_json:
        typer.echo(json.dumps([record_to_dict(r) for r in records], indent=2))
        return

    if not records:
        ctx.console.print("no releases recorded", Style.DIM)
        return

    for r in records:
        ctx.console.print(
            f"{r.tag:<12} {r.branch:<16} {r.commit_id[:8]}  {str(r.bump_kind):<5}  "
            f"{r.created_at.isoformat(timespec='seconds')}"
        )
