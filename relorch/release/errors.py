"""Error types for the release orchestrator.

Every component reports failures as a ReleaseError. The ``kind`` names the
concrete failure; ``category`` groups kinds by how they must be handled:

- TRANSIENT: retried with bounded backoff at the call site.
- IDEMPOTENCY: another run already did the work; not surfaced loudly.
- FATAL_CONFIG: needs an operator (tag conflict, diverged ledger, bad input).
- FATAL_QUALITY: the tagged commit is broken; needs a new commit.
- TIMEOUT / CANCELLED: terminal run outcomes with their own reporting.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal

__all__ = [
    "ErrorCategory",
    "ErrorKind",
    "ReleaseError",
    "transient",
]

ErrorKind = Literal[
    "transient",
    "publish_failed",
    "lock_timeout",
    "already_released",
    "already_exists",
    "tag_conflict",
    "invalid_input",
    "invalid_config",
    "history_incomplete",
    "ledger_diverged",
    "build_failed",
    "test_failed",
    "package_failed",
    "deploy_failed",
    "timeout",
    "cancelled",
]


class ErrorCategory(Enum):
    TRANSIENT = "transient"
    IDEMPOTENCY = "idempotency"
    FATAL_CONFIG = "fatal_config"
    FATAL_QUALITY = "fatal_quality"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


_CATEGORIES: dict[str, ErrorCategory] = {
    "transient": ErrorCategory.TRANSIENT,
    "publish_failed": ErrorCategory.TRANSIENT,
    "lock_timeout": ErrorCategory.TRANSIENT,
    "already_released": ErrorCategory.IDEMPOTENCY,
    "already_exists": ErrorCategory.IDEMPOTENCY,
    "tag_conflict": ErrorCategory.FATAL_CONFIG,
    "invalid_input": ErrorCategory.FATAL_CONFIG,
    "invalid_config": ErrorCategory.FATAL_CONFIG,
    "history_incomplete": ErrorCategory.FATAL_CONFIG,
    "ledger_diverged": ErrorCategory.FATAL_CONFIG,
    "build_failed": ErrorCategory.FATAL_QUALITY,
    "test_failed": ErrorCategory.FATAL_QUALITY,
    "package_failed": ErrorCategory.FATAL_QUALITY,
    "deploy_failed": ErrorCategory.FATAL_QUALITY,
    "timeout": ErrorCategory.TIMEOUT,
    "cancelled": ErrorCategory.CANCELLED,
}


@dataclass(frozen=True, slots=True)
class ReleaseError:
    """Canonical error payload.

    Stable across the decision engine, cutter, executor and adapters, so the
    orchestrator and the CLI can render it without knowing who produced it.
    """

    kind: ErrorKind
    message: str
    hint: str | None = None

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self.kind]

    @property
    def is_transient(self) -> bool:
        return self.category is ErrorCategory.TRANSIENT

    @property
    def is_idempotent_success(self) -> bool:
        return self.category is ErrorCategory.IDEMPOTENCY

    def pretty(self) -> str:
        if self.hint:
            return f"{self.message} (hint: {self.hint})"
        return self.message


def transient(message: str, hint: str | None = None) -> ReleaseError:
    """Shorthand for adapters reporting a retryable failure."""
    return ReleaseError(kind="transient", message=message, hint=hint)
