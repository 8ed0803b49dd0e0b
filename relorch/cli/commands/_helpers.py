"""Shared helpers for CLI commands."""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn

import typer

from relorch.core.config import CONFIG_FILE_NAME
from relorch.core.errors import ErrorCode
from relorch.core.result import Err
from relorch.git.source import GitCommitSource
from relorch.orchestrator.notify import ConsoleNotificationSink
from relorch.orchestrator.orchestrator import Orchestrator
from relorch.output.console import Style
from relorch.pipeline.commands import CommandArtifactRegistry, CommandBuilder, command_check
from relorch.pipeline.executor import Executor
from relorch.pipeline.kubectl import KubectlDeploymentTarget
from relorch.release.cutter import ReleaseCutter
from relorch.release.errors import ErrorCategory, ReleaseError
from relorch.release.ledger import JsonLedgerStore, LedgerStore
from relorch.release.model import Commit
from relorch.release.ports import CommitSource
from relorch.release.store import FileReleaseStore

if TYPE_CHECKING:
    from relorch.cli.context import CLIContext


def exit_code_for(error: ReleaseError) -> ErrorCode:
    match error.category:
        case ErrorCategory.IDEMPOTENCY:
            return ErrorCode.OK
        case ErrorCategory.TRANSIENT | ErrorCategory.TIMEOUT:
            return ErrorCode.TRANSIENT_ERROR
        case ErrorCategory.FATAL_QUALITY:
            return ErrorCode.QUALITY_ERROR
        case ErrorCategory.CANCELLED:
            return ErrorCode.USER_ERROR
        case ErrorCategory.FATAL_CONFIG:
            if error.kind == "invalid_input":
                return ErrorCode.USER_ERROR
            return ErrorCode.CONFIG_ERROR


def fail(error: ReleaseError, ctx: CLIContext) -> NoReturn:
    ctx.console.error(error.message)
    if error.hint:
        ctx.console.print(f"hint: {error.hint}", Style.DIM)
    raise typer.Exit(code=int(exit_code_for(error)))


def exit_with_code(code: ErrorCode) -> NoReturn:
    raise typer.Exit(code=int(code))


def open_ledger(ctx: CLIContext) -> JsonLedgerStore:
    ledger = JsonLedgerStore.open(ctx.ledger_path)
    if isinstance(ledger, Err):
        fail(ledger.error, ctx)
    return ledger.value


def make_source(ctx: CLIContext) -> GitCommitSource:
    return GitCommitSource(ctx.root, poll_interval=ctx.config.orchestrator.poll_seconds)


def make_cutter(ctx: CLIContext, *, ledger: LedgerStore, source: CommitSource) -> ReleaseCutter:
    return ReleaseCutter(
        ledger=ledger,
        source=source,
        store=FileReleaseStore(ctx.releases_dir),
        console=ctx.console,
        release_config=ctx.config.release,
        publish_policy=ctx.config.retry.publish,
    )


def make_orchestrator(
    ctx: CLIContext, *, ledger: LedgerStore, source: CommitSource
) -> Orchestrator:
    """Orchestrator over the configured build, registry and kubectl deployment."""
    config = ctx.config
    required = {"build.command": config.build.command, "registry.push": config.registry.push}
    for key, command in required.items():
        if not command:
            fail(
                ReleaseError(
                    kind="invalid_config",
                    message=f"{key} is not set",
                    hint=f"Set {key} in {CONFIG_FILE_NAME} to run the pipeline.",
                ),
                ctx,
            )

    executor = Executor(
        builder=CommandBuilder(
            ctx.root, config.build, console=ctx.console, timeout=config.timeouts.build
        ),
        checks=[
            command_check(check, ctx.root, timeout=config.timeouts.test)
            for check in config.build.checks
        ],
        registry=CommandArtifactRegistry(
            ctx.root, config.registry, timeout=config.timeouts.package
        ),
        target=KubectlDeploymentTarget(
            namespace=config.deploy.namespace, container=config.deploy.container, cwd=ctx.root
        ),
        console=ctx.console,
        deploy_config=config.deploy,
        timeouts=config.timeouts,
        retry=config.retry,
    )
    return Orchestrator(
        source=source,
        ledger=ledger,
        cutter=make_cutter(ctx, ledger=ledger, source=source),
        executor=executor,
        sink=ConsoleNotificationSink(ctx.console),
        console=ctx.console,
        config=config.orchestrator,
    )


def resolve_head(
    ctx: CLIContext, source: GitCommitSource, *, branch: str, commit: str | None
) -> Commit:
    """The commit to decide for: ``commit`` if given, else the remote head of ``branch``."""
    commit_id = commit
    if commit_id is None:
        head = source.branch_head(branch)
        if isinstance(head, Err):
            fail(head.error, ctx)
        commit_id = head.value

    found = source.get_commit(commit_id)
    if found is None:
        ctx.console.error(f"unknown commit: {commit_id}")
        exit_with_code(ErrorCode.USER_ERROR)
    return found
