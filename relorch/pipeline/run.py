from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Literal

from relorch.release.errors import ReleaseError


class Phase(Enum):
    DETECTING = "detecting"
    RELEASING = "releasing"
    BUILDING = "building"
    TESTING = "testing"
    PACKAGING = "packaging"
    DEPLOYING = "deploying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.SUCCEEDED, Phase.FAILED)


class RunKind(Enum):
    """Deciding runs may cut a release; executing runs build and deploy a tag."""

    DECIDE = "decide"
    EXECUTE = "execute"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class PipelineRun:
    """One handling of one commit. Transitions return new instances."""

    id: str
    branch: str
    triggering_commit_id: str
    kind: RunKind
    phase: Phase
    started_at: datetime
    attempt_count: int = 1
    ended_at: datetime | None = None
    tag: str | None = None
    failed_phase: Phase | None = None
    error: ReleaseError | None = None
    outcome: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.phase.is_terminal

    def advance(self, phase: Phase) -> PipelineRun:
        if self.is_terminal:
            raise ValueError(f"run {self.id} is already {self.phase}")
        return replace(self, phase=phase)

    def retried(self) -> PipelineRun:
        return replace(self, attempt_count=self.attempt_count + 1)

    def succeed(self, *, at: datetime, outcome: str) -> PipelineRun:
        if self.is_terminal:
            raise ValueError(f"run {self.id} is already {self.phase}")
        return replace(self, phase=Phase.SUCCEEDED, ended_at=at, outcome=outcome)

    def fail(self, error: ReleaseError, *, at: datetime) -> PipelineRun:
        if self.is_terminal:
            raise ValueError(f"run {self.id} is already {self.phase}")
        return replace(
            self,
            phase=Phase.FAILED,
            ended_at=at,
            failed_phase=self.phase,
            error=error,
            outcome=f"failed ({error.kind})",
        )


RunStatus = Literal["succeeded", "failed"]


@dataclass(frozen=True, slots=True)
class RunNotification:
    """What the operator sink receives for every terminal run."""

    run_id: str
    branch: str
    commit_id: str
    kind: RunKind
    phase: Phase
    status: RunStatus
    outcome: str | None = None
    error: ReleaseError | None = None

    @classmethod
    def from_run(cls, run: PipelineRun) -> RunNotification:
        if not run.is_terminal:
            raise ValueError(f"run {run.id} is not terminal")
        failed = run.phase is Phase.FAILED
        return cls(
            run_id=run.id,
            branch=run.branch,
            commit_id=run.triggering_commit_id,
            kind=run.kind,
            phase=(run.failed_phase or run.phase) if failed else run.phase,
            status="failed" if failed else "succeeded",
            outcome=run.outcome,
            error=run.error,
        )
