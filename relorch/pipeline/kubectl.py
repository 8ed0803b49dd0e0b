"""DeploymentTarget backed by the kubectl CLI.

``set image`` only changes the desired state of the Deployment; applying the
same reference twice is a no-op for the cluster, so retries are safe.
"""

from __future__ import annotations

from pathlib import Path

from relorch.core.result import Err, Ok, Result
from relorch.platform.process import ProcessError, is_transient
from relorch.platform.process import run as run_process
from relorch.pipeline.ports import RolloutStatus
from relorch.release.errors import ReleaseError

__all__ = ["KubectlDeploymentTarget"]

KUBECTL_TIMEOUT_SECONDS = 60.0

# Grace period on top of the rollout timeout before the kubectl process is killed.
_ROLLOUT_GRACE_SECONDS = 30.0


class KubectlDeploymentTarget:
    def __init__(
        self,
        *,
        namespace: str = "default",
        container: str = "*",
        context: str | None = None,
        cwd: Path | None = None,
        kubectl: str = "kubectl",
    ) -> None:
        self._namespace = namespace
        self._container = container
        self._context = context
        self._cwd = cwd or Path.cwd()
        self._kubectl = kubectl

    def _cmd(self, *args: str) -> list[str]:
        cmd = [self._kubectl]
        if self._context:
            cmd += ["--context", self._context]
        cmd += ["--namespace", self._namespace, *args]
        return cmd

    def set_desired_image(self, deployment: str, image_ref: str) -> Result[None, ReleaseError]:
        result = run_process(
            self._cmd("set", "image", f"deployment/{deployment}", f"{self._container}={image_ref}"),
            cwd=self._cwd,
            timeout=KUBECTL_TIMEOUT_SECONDS,
        )
        if isinstance(result, Err):
            return Err(_to_release_error(result.error, f"kubectl set image {deployment} failed"))
        return Ok(None)

    def wait_for_rollout(self, deployment: str, timeout: float) -> RolloutStatus:
        result = run_process(
            self._cmd("rollout", "status", f"deployment/{deployment}", f"--timeout={timeout:g}s"),
            cwd=self._cwd,
            timeout=timeout + _ROLLOUT_GRACE_SECONDS,
        )
        if isinstance(result, Ok):
            return RolloutStatus.COMPLETE

        error = result.error
        text = error.stderr.lower()
        if error.timed_out or "timed out waiting" in text:
            return RolloutStatus.TIMED_OUT
        return RolloutStatus.FAILED

    def current_image(self, deployment: str) -> Result[str, ReleaseError]:
        """Image of the first container in the Deployment's pod template."""
        result = run_process(
            self._cmd(
                "get",
                f"deployment/{deployment}",
                "-o",
                "jsonpath={.spec.template.spec.containers[0].image}",
            ),
            cwd=self._cwd,
            timeout=KUBECTL_TIMEOUT_SECONDS,
        )
        if isinstance(result, Err):
            return Err(_to_release_error(result.error, f"kubectl get {deployment} failed"))

        image = result.value.strip()
        if not image:
            return Err(
                ReleaseError(kind="invalid_input", message=f"{deployment} has no container image")
            )
        return Ok(image)


def _to_release_error(error: ProcessError, message: str) -> ReleaseError:
    hint = error.stderr.strip() or None
    if is_transient(error):
        return ReleaseError(kind="transient", message=message, hint=hint)
    return ReleaseError(kind="deploy_failed", message=message, hint=hint)
