"""Operator notification sink for terminal runs."""

from __future__ import annotations

from typing import Protocol

from relorch.output.console import ConsoleProtocol, Style
from relorch.pipeline.run import RunNotification

__all__ = ["ConsoleNotificationSink", "NotificationSink"]


class NotificationSink(Protocol):
    def notify(self, notification: RunNotification) -> None: ...


class ConsoleNotificationSink:
    """Writes one line per terminal run, plus the hint of a failure."""

    def __init__(self, console: ConsoleProtocol) -> None:
        self._console = console

    def notify(self, notification: RunNotification) -> None:
        n = notification
        where = f"{n.kind} {n.commit_id[:8]} on {n.branch} [{n.run_id}]"

        if n.status == "succeeded":
            self._console.success(f"{where}: {n.outcome or 'done'}")
            return

        error = n.error
        if error is None:
            self._console.error(f"{where}: failed in {n.phase}")
            return

        self._console.error(f"{where}: failed in {n.phase} ({error.kind}): {error.message}")
        if error.hint:
            self._console.print(f"hint: {error.hint}", Style.DIM)
