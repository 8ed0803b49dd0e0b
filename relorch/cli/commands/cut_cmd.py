from __future__ import annotations

import typer

from relorch.cli.commands._helpers import (
    fail,
    make_cutter,
    make_source,
    open_ledger,
    resolve_head,
)
from relorch.cli.context import build_context
from relorch.core.result import Err
from relorch.release.decision import decide
from relorch.release.model import CutRelease, NoRelease


def cut(
    branch: str | None = typer.Option(
        None, "--branch", "-b", help="Branch (default: first configured)"
    ),
    commit: str | None = typer.Option(
        None, "--commit", help="Head commit (default: remote branch head)"
    ),
) -> None:
    """Decide and, if warranted, cut the next release of the branch.

    Pushing the tag triggers the build-test-deploy run of a watching
    orchestrator.
    """
    ctx = build_context()
    branch = branch or ctx.default_branch()
    ledger = open_ledger(ctx)
    source = make_source(ctx)
    cutter = make_cutter(ctx, ledger=ledger, source=source)
    head = resolve_head(ctx, source, branch=branch, commit=commit)

    latest = ledger.get_latest(branch)
    if latest is not None:
        repaired = cutter.reconcile(latest)
        if isinstance(repaired, Err):
            fail(repaired.error, ctx)

    decision = decide(branch=branch, head=head, latest=latest, lookup=source.history_lookup())
    if isinstance(decision, Err):
        fail(decision.error, ctx)

    match decision.value:
        case NoRelease(reason=reason):
            ctx.console.print(f"{branch}: nothing to release ({reason})")
        case CutRelease(bump=bump, commits=commits):
            result = cutter.cut(branch=branch, head=head, bump=bump, source_commits=commits)
            if isinstance(result, Err):
                if result.error.is_idempotent_success:
                    ctx.console.info(result.error.message)
                    return
                fail(result.error, ctx)
