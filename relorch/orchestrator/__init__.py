"""Event handling: branch locks, the orchestrator state machine, notifications and rollback."""

from __future__ import annotations

from relorch.orchestrator.locks import BranchLocks
from relorch.orchestrator.notify import ConsoleNotificationSink, NotificationSink
from relorch.orchestrator.orchestrator import Orchestrator
from relorch.orchestrator.rollback import rollback, rollback_image

__all__ = [
    "BranchLocks",
    "ConsoleNotificationSink",
    "NotificationSink",
    "Orchestrator",
    "rollback",
    "rollback_image",
]
