from __future__ import annotations

import typer

from relorch.cli.commands._helpers import fail, make_source, open_ledger, resolve_head
from relorch.cli.context import build_context
from relorch.core.result import Err
from relorch.output.console import Style
from relorch.release.decision import decide as decide_release
from relorch.release.model import CutRelease, NoRelease
from relorch.release.semver import INITIAL_VERSION


def decide(
    branch: str | None = typer.Option(
        None, "--branch", "-b", help="Branch (default: first configured)"
    ),
    commit: str | None = typer.Option(
        None, "--commit", help="Head commit (default: remote branch head)"
    ),
) -> None:
    """Show what a release decision for the branch head would be. Writes nothing."""
    ctx = build_context()
    branch = branch or ctx.default_branch()
    ledger = open_ledger(ctx)
    source = make_source(ctx)
    head = resolve_head(ctx, source, branch=branch, commit=commit)

    latest = ledger.get_latest(branch)
    decision = decide_release(
        branch=branch, head=head, latest=latest, lookup=source.history_lookup()
    )
    if isinstance(decision, Err):
        fail(decision.error, ctx)

    current = latest.tag if latest is not None else "none"
    match decision.value:
        case NoRelease(reason=reason):
            ctx.console.print(
                f"{branch}: no release at {head.short_id} ({reason}); latest {current}"
            )
        case CutRelease(bump=bump, commits=commits):
            base = latest.version if latest is not None else INITIAL_VERSION
            ctx.console.header(f"{branch}: {current} -> {base.bump(bump).to_tag()} ({bump})")
            for c in commits:
                ctx.console.print(f"  {c.short_id} {c.subject}", Style.DIM)
