"""Collaborators of the build-test-deploy executor."""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Literal, Protocol

from relorch.core.result import Result
from relorch.release.errors import ReleaseError
from relorch.release.model import Commit

__all__ = [
    "Artifact",
    "ArtifactRegistry",
    "Builder",
    "CheckKind",
    "DeploymentTarget",
    "QualityCheck",
    "RolloutStatus",
]


@dataclass(frozen=True, slots=True)
class Artifact:
    """Build output for one commit."""

    commit_id: str
    content: bytes
    name: str = "artifact"

    @property
    def digest(self) -> str:
        return "sha256:" + hashlib.sha256(self.content).hexdigest()


class Builder(Protocol):
    def build(self, commit: Commit) -> Result[Artifact, ReleaseError]: ...


CheckKind = Literal["unit", "network"]


@dataclass(frozen=True, slots=True)
class QualityCheck:
    """One automated check run against a built artifact.

    ``unit`` checks fail fast. ``network`` checks are known to be flaky and
    are retried with the network test policy.
    """

    name: str
    kind: CheckKind
    run: Callable[[Artifact], Result[None, ReleaseError]]


class ArtifactRegistry(Protocol):
    def publish(self, ref: str, content: bytes) -> Result[None, ReleaseError]: ...

    def exists(self, ref: str) -> Result[bool, ReleaseError]: ...


class RolloutStatus(Enum):
    COMPLETE = "complete"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    def __str__(self) -> str:
        return self.value


class DeploymentTarget(Protocol):
    """Declarative deployment: setting the same image twice converges."""

    def set_desired_image(self, deployment: str, image_ref: str) -> Result[None, ReleaseError]: ...

    def wait_for_rollout(self, deployment: str, timeout: float) -> RolloutStatus: ...
