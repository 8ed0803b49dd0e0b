"""Operator-initiated rollback.

Failed rollouts are never rolled back automatically. An operator picks an
earlier release and this module sets the deployment back to its image.
"""

from __future__ import annotations

from relorch.core.result import Err, Ok, Result
from relorch.core.retry import NO_RETRY, RetryPolicy, call_with_retry
from relorch.output.console import ConsoleProtocol
from relorch.pipeline.executor import image_ref_for
from relorch.pipeline.ports import DeploymentTarget, RolloutStatus
from relorch.release.errors import ReleaseError
from relorch.release.ledger import LedgerStore

__all__ = ["rollback", "rollback_image"]


def rollback_image(
    ledger: LedgerStore,
    *,
    branch: str,
    repository: str,
    tag: str | None = None,
) -> Result[str, ReleaseError]:
    """Image reference to roll back to.

    With ``tag`` the image of that release is used. Without it, the release
    before the latest one on ``branch``.
    """
    if tag is not None:
        record = ledger.get_by_tag(tag)
        if record is None:
            return Err(ReleaseError(kind="invalid_input", message=f"unknown release: {tag}"))
        return Ok(image_ref_for(repository, record.commit_id))

    records = ledger.records(branch)
    if len(records) < 2:
        return Err(
            ReleaseError(
                kind="invalid_input",
                message=f"{branch} has no earlier release to roll back to",
                hint="Pass --to <tag> to choose a release explicitly.",
            )
        )
    return Ok(image_ref_for(repository, records[-2].commit_id))


def rollback(
    *,
    target: DeploymentTarget,
    deployment: str,
    image_ref: str,
    timeout: float,
    console: ConsoleProtocol,
    policy: RetryPolicy = NO_RETRY,
) -> Result[None, ReleaseError]:
    console.warning(f"rolling {deployment} back to {image_ref}")

    applied = call_with_retry(
        lambda: target.set_desired_image(deployment, image_ref),
        policy=policy,
        is_retryable=lambda e: e.is_transient,
    )
    if isinstance(applied, Err):
        return Err(
            ReleaseError(
                kind="deploy_failed",
                message=f"could not set {deployment} to {image_ref}: {applied.error.message}",
                hint=applied.error.hint,
            )
        )

    match target.wait_for_rollout(deployment, timeout):
        case RolloutStatus.COMPLETE:
            console.success(f"{deployment} rolled back to {image_ref}")
            return Ok(None)
        case RolloutStatus.TIMED_OUT:
            return Err(
                ReleaseError(
                    kind="timeout",
                    message=f"rollback of {deployment} did not finish in {timeout:g}s",
                )
            )
        case RolloutStatus.FAILED:
            return Err(
                ReleaseError(kind="deploy_failed", message=f"rollback of {deployment} failed")
            )
