"""Build-test-deploy side of the orchestrator.

- run: PipelineRun and its phases
- fsm: step handler loop shared by executor phases
- executor: BUILDING -> TESTING -> PACKAGING -> DEPLOYING for one tagged commit
- kubectl: DeploymentTarget over the kubectl CLI
- commands: Builder, ArtifactRegistry and QualityCheck driven by configured commands
"""

from __future__ import annotations

from relorch.pipeline.executor import Executor, image_ref_for
from relorch.pipeline.ports import (
    Artifact,
    ArtifactRegistry,
    Builder,
    DeploymentTarget,
    QualityCheck,
    RolloutStatus,
)
from relorch.pipeline.run import Phase, PipelineRun, RunKind, RunNotification

__all__ = [
    "Artifact",
    "ArtifactRegistry",
    "Builder",
    "DeploymentTarget",
    "Executor",
    "Phase",
    "PipelineRun",
    "QualityCheck",
    "RolloutStatus",
    "RunKind",
    "RunNotification",
    "image_ref_for",
]
