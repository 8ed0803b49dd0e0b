from __future__ import annotations

import typer

from relorch.cli.commands._helpers import fail, open_ledger
from relorch.cli.context import build_context
from relorch.core.errors import ErrorCode
from relorch.core.result import Err, Ok
from relorch.orchestrator.rollback import rollback as rollback_to
from relorch.orchestrator.rollback import rollback_image
from relorch.output.console import Style
from relorch.pipeline.kubectl import KubectlDeploymentTarget


def rollback(
    to: str | None = typer.Option(None, "--to", help="Release tag to roll back to"),
    branch: str | None = typer.Option(
        None, "--branch", "-b", help="Branch (default: first configured)"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Set the deployment back to the image of an earlier release.

    Defaults to the release before the latest one. Tags and the ledger are
    left unchanged.
    """
    ctx = build_context()
    branch = branch or ctx.default_branch()
    deploy = ctx.config.deploy
    store = open_ledger(ctx)

    image = rollback_image(store, branch=branch, repository=deploy.image_repository, tag=to)
    if isinstance(image, Err):
        fail(image.error, ctx)

    target = KubectlDeploymentTarget(
        namespace=deploy.namespace, container=deploy.container, cwd=ctx.root
    )
    match target.current_image(deploy.deployment):
        case Ok(current):
            ctx.console.print(f"{deploy.deployment}: currently {current}", Style.DIM)
        case Err(e):
            ctx.console.warning(f"current image unknown: {e.message}")

    if not yes and not typer.confirm(f"Roll {deploy.deployment} back to {image.value}?"):
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    result = rollback_to(
        target=target,
        deployment=deploy.deployment,
        image_ref=image.value,
        timeout=ctx.config.timeouts.rollout,
        console=ctx.console,
        policy=ctx.config.retry.deploy,
    )
    if isinstance(result, Err):
        fail(result.error, ctx)
