from __future__ import annotations

from relorch.orchestrator.notify import ConsoleNotificationSink
from relorch.output.console import MockConsole, Style
from relorch.pipeline.run import Phase, RunKind, RunNotification
from relorch.release.errors import ReleaseError
from relorch.test.fakes import commit_id


def _note(**changes: object) -> RunNotification:
    base: dict[str, object] = {
        "run_id": "abc123",
        "branch": "main",
        "commit_id": commit_id("a"),
        "kind": RunKind.EXECUTE,
        "phase": Phase.SUCCEEDED,
        "status": "succeeded",
        "outcome": "deployed registry.test/app:1",
    }
    base.update(changes)
    return RunNotification(**base)  # type: ignore[arg-type]


def test_success_line() -> None:
    console = MockConsole()

    ConsoleNotificationSink(console).notify(_note())

    assert console.messages == [
        f"OK execute {commit_id('a')[:8]} on main [abc123]: deployed registry.test/app:1"
    ]


def test_failure_line_with_hint() -> None:
    console = MockConsole()
    error = ReleaseError(kind="deploy_failed", message="rollout failed", hint="roll back")

    ConsoleNotificationSink(console).notify(
        _note(phase=Phase.DEPLOYING, status="failed", error=error, outcome=None)
    )

    assert console.has_error()
    assert "failed in deploying (deploy_failed): rollout failed" in console.messages[0]
    assert console.outputs[1].message == "hint: roll back"
    assert console.outputs[1].style is Style.DIM
