from __future__ import annotations

import queue
import threading

import typer

from relorch.cli.commands._helpers import (
    exit_with_code,
    make_orchestrator,
    make_source,
    open_ledger,
)
from relorch.cli.context import build_context
from relorch.core.errors import ErrorCode


def watch(
    branch: list[str] | None = typer.Option(
        None, "--branch", "-b", help="Branch to watch; repeatable (default: configured branches)"
    ),
) -> None:
    """Release, build, test and deploy every releasable commit on the branches.

    Runs until interrupted or until a branch can no longer be read. Every
    finished run is reported on the console.
    """
    ctx = build_context()
    branches = tuple(branch) if branch else ctx.config.orchestrator.branches
    ledger = open_ledger(ctx)
    source = make_source(ctx)
    orchestrator = make_orchestrator(ctx, ledger=ledger, source=source)

    ended: queue.Queue[tuple[str, Exception | None]] = queue.Queue()

    def follow(name: str) -> None:
        try:
            orchestrator.watch(name)
        except Exception as e:  # noqa: BLE001 - reported by the main thread
            ended.put((name, e))
        else:
            ended.put((name, None))

    for name in branches:
        threading.Thread(
            target=follow, args=(name,), name=f"relorch-watch-{name}", daemon=True
        ).start()

    stopped: list[str] = []
    try:
        for _ in branches:
            name, error = ended.get()
            if error is not None:
                ctx.console.error(f"{name}: stopped watching: {error}")
                stopped.append(name)
                break
    except KeyboardInterrupt:
        ctx.console.warning("interrupted; waiting for running pipelines")
    finally:
        orchestrator.shutdown(wait=True)

    if stopped:
        exit_with_code(ErrorCode.CONFIG_ERROR)
