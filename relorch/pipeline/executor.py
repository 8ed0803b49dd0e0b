"""Build-test-deploy executor.

Runs one tagged commit through BUILDING -> TESTING -> PACKAGING -> DEPLOYING.
Any phase may fail the run; a failed run is never retried against the same
tag. Phase transitions are reported to the owner of the run through
``on_transition``.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime

from relorch.core.config import DeployConfig, RetryConfig, TimeoutsConfig
from relorch.core.result import Err, Ok, Result
from relorch.core.retry import call_with_retry
from relorch.output.console import ConsoleProtocol, Style
from relorch.pipeline.deadline import run_with_timeout
from relorch.pipeline.fsm import StepHandler, StepOutcome, advance, finish, run_state_machine
from relorch.pipeline.ports import (
    Artifact,
    ArtifactRegistry,
    Builder,
    DeploymentTarget,
    QualityCheck,
    RolloutStatus,
)
from relorch.pipeline.run import Phase, PipelineRun
from relorch.release.errors import ErrorKind, ReleaseError
from relorch.release.model import Commit, ReleaseRecord

__all__ = ["ExecutionState", "Executor", "image_ref_for"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def image_ref_for(repository: str, commit_id: str) -> str:
    """Content-addressed image reference: the same commit always maps to the same ref."""
    return f"{repository}:{commit_id}"


@dataclass(frozen=True, slots=True)
class ExecutionState:
    run: PipelineRun
    commit: Commit
    record: ReleaseRecord
    artifact: Artifact | None = None
    image_ref: str | None = None

    def entering(self, phase: Phase, **changes: object) -> ExecutionState:
        return replace(self, run=self.run.advance(phase), **changes)  # type: ignore[arg-type]


class Executor:
    def __init__(
        self,
        *,
        builder: Builder,
        checks: Sequence[QualityCheck],
        registry: ArtifactRegistry,
        target: DeploymentTarget,
        console: ConsoleProtocol,
        deploy_config: DeployConfig | None = None,
        timeouts: TimeoutsConfig | None = None,
        retry: RetryConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._builder = builder
        self._checks = tuple(checks)
        self._registry = registry
        self._target = target
        self._console = console
        self._deploy = deploy_config or DeployConfig()
        self._timeouts = timeouts or TimeoutsConfig()
        self._retry = retry or RetryConfig()
        self._clock = clock
        self._sleep = sleep

    def execute(
        self,
        run: PipelineRun,
        *,
        commit: Commit,
        record: ReleaseRecord,
        on_transition: Callable[[PipelineRun], None],
        cancel_requested: Callable[[], bool],
    ) -> PipelineRun:
        """Run the pipeline for a tagged commit and return the terminal run."""
        if record.commit_id != commit.id:
            return run.fail(
                ReleaseError(
                    kind="invalid_input",
                    message=f"{commit.short_id} does not carry release {record.tag}",
                ),
                at=self._clock(),
            )

        start = ExecutionState(run=run, commit=commit, record=record)
        if run.phase is not Phase.BUILDING:
            start = start.entering(Phase.BUILDING)
            on_transition(start.run)

        handlers: dict[str, StepHandler[ExecutionState]] = {
            Phase.BUILDING.value: self._timed(Phase.BUILDING, self._build),
            Phase.TESTING.value: self._timed(Phase.TESTING, self._test),
            Phase.PACKAGING.value: self._timed(Phase.PACKAGING, self._package),
            Phase.DEPLOYING.value: self._timed(Phase.DEPLOYING, self._deploy_image),
        }

        def interrupt(state: ExecutionState) -> ReleaseError | None:
            # Checked only between phases: a started deployment always completes.
            if cancel_requested():
                return ReleaseError(
                    kind="cancelled",
                    message=f"cancelled before {state.run.phase}",
                    hint=f"{record.tag} stays in place; push a new commit to release again.",
                )
            return None

        self._console.print(f"{record.tag}: pipeline started ({run.id})", Style.DIM)
        result = run_state_machine(
            initial_state=start,
            get_step=lambda s: s.run.phase.value,
            handlers=handlers,
            save_state=lambda s: on_transition(s.run),
            interrupt=interrupt,
        )

        if isinstance(result, Err):
            failure = result.error
            failed = failure.state.run.fail(failure.error, at=self._clock())
            self._console.error(
                f"{record.tag}: {failed.failed_phase} failed: {failure.error.pretty()}"
            )
            return failed

        final = result.value
        done = final.run.succeed(at=self._clock(), outcome=f"deployed {final.image_ref}")
        self._console.success(f"{record.tag}: deployed {final.image_ref}")
        return done

    def _timed(
        self,
        phase: Phase,
        handler: Callable[[ExecutionState], Result[StepOutcome[ExecutionState], ReleaseError]],
    ) -> StepHandler[ExecutionState]:
        seconds = {
            Phase.BUILDING: self._timeouts.build,
            Phase.TESTING: self._timeouts.test,
            Phase.PACKAGING: self._timeouts.package,
            Phase.DEPLOYING: self._timeouts.deploy,
        }[phase]
        crash_kinds: dict[Phase, ErrorKind] = {
            Phase.BUILDING: "build_failed",
            Phase.TESTING: "test_failed",
            Phase.PACKAGING: "package_failed",
            Phase.DEPLOYING: "deploy_failed",
        }
        crash_kind = crash_kinds[phase]

        def wrapped(state: ExecutionState) -> Result[StepOutcome[ExecutionState], ReleaseError]:
            self._console.print(f"{state.record.tag}: {phase}", Style.DIM)
            return run_with_timeout(
                lambda: handler(state),
                seconds=seconds,
                what=str(phase),
                crash_kind=crash_kind,
            )

        return wrapped

    def _build(self, state: ExecutionState) -> Result[StepOutcome[ExecutionState], ReleaseError]:
        built = self._builder.build(state.commit)
        if isinstance(built, Err):
            return Err(
                ReleaseError(
                    kind="build_failed",
                    message=f"build of {state.commit.short_id} failed: {built.error.message}",
                    hint="The tag is kept; fix forward with a new commit.",
                )
            )
        return Ok(advance(state.entering(Phase.TESTING, artifact=built.value)))

    def _test(self, state: ExecutionState) -> Result[StepOutcome[ExecutionState], ReleaseError]:
        artifact = state.artifact
        if artifact is None:
            return Err(_missing(state, "artifact", "test_failed"))

        for check in self._checks:
            if check.kind == "network":
                policy = self._retry.network_tests
                outcome = call_with_retry(
                    lambda c=check: c.run(artifact),
                    policy=policy,
                    is_retryable=lambda _e: True,
                    sleep=self._sleep,
                    on_retry=lambda attempt, e, c=check: self._console.print(
                        f"{c.name}: attempt {attempt} failed ({e.message}), retrying", Style.DIM
                    ),
                )
                attempts = policy.attempts
            else:
                outcome = check.run(artifact)
                attempts = 1

            if isinstance(outcome, Err):
                suffix = f" after {attempts} attempts" if attempts > 1 else ""
                return Err(
                    ReleaseError(
                        kind="test_failed",
                        message=f"{check.name} failed{suffix}: {outcome.error.message}",
                    )
                )

        return Ok(advance(state.entering(Phase.PACKAGING)))

    def _package(self, state: ExecutionState) -> Result[StepOutcome[ExecutionState], ReleaseError]:
        artifact = state.artifact
        if artifact is None:
            return Err(_missing(state, "artifact", "package_failed"))
        ref = image_ref_for(self._deploy.image_repository, state.commit.id)

        present = call_with_retry(
            lambda: self._registry.exists(ref),
            policy=self._retry.publish,
            is_retryable=lambda e: e.is_transient,
            sleep=self._sleep,
        )
        if isinstance(present, Err):
            return Err(_package_failed(ref, present.error))

        if present.value:
            self._console.print(f"{ref}: already in registry", Style.DIM)
        else:
            published = call_with_retry(
                lambda: self._registry.publish(ref, artifact.content),
                policy=self._retry.publish,
                is_retryable=lambda e: e.is_transient,
                sleep=self._sleep,
            )
            if isinstance(published, Err):
                return Err(_package_failed(ref, published.error))

        return Ok(advance(state.entering(Phase.DEPLOYING, image_ref=ref)))

    def _deploy_image(
        self, state: ExecutionState
    ) -> Result[StepOutcome[ExecutionState], ReleaseError]:
        ref = state.image_ref
        if ref is None:
            return Err(_missing(state, "image reference", "deploy_failed"))
        deployment = self._deploy.deployment

        applied = call_with_retry(
            lambda: self._target.set_desired_image(deployment, ref),
            policy=self._retry.deploy,
            is_retryable=lambda e: e.is_transient,
            sleep=self._sleep,
        )
        if isinstance(applied, Err):
            return Err(
                ReleaseError(
                    kind="deploy_failed",
                    message=f"could not set {deployment} to {ref}: {applied.error.message}",
                )
            )

        status = self._target.wait_for_rollout(deployment, self._timeouts.rollout)
        match status:
            case RolloutStatus.COMPLETE:
                return Ok(finish(state))
            case RolloutStatus.TIMED_OUT:
                return Err(
                    ReleaseError(
                        kind="timeout",
                        message=(
                            f"rollout of {deployment} did not finish "
                            f"in {self._timeouts.rollout:g}s"
                        ),
                        hint="No automatic rollback; use `relorch rollback` if needed.",
                    )
                )
            case RolloutStatus.FAILED:
                return Err(
                    ReleaseError(
                        kind="deploy_failed",
                        message=f"rollout of {deployment} to {ref} failed",
                        hint="No automatic rollback; use `relorch rollback` if needed.",
                    )
                )


def _package_failed(ref: str, cause: ReleaseError) -> ReleaseError:
    return ReleaseError(kind="package_failed", message=f"{ref}: {cause.message}", hint=cause.hint)


def _missing(state: ExecutionState, what: str, kind: ErrorKind) -> ReleaseError:
    return ReleaseError(
        kind=kind,
        message=f"{state.record.tag}: no {what} from the previous phase",
    )
