"""Top-level state machine tying decision, cut and execution together.

Every CommitEvent becomes one of two kinds of run:

- DECIDE: the commit carries no ledger-known release tag. Under the branch
  lock the latest release is reconciled, the decision engine runs, and on
  CutRelease the cutter tags the head. The tag push is the self-trigger that
  delivers the next event.
- EXECUTE: the commit carries a ledger-known release tag. The executor
  builds, tests, packages and deploys it outside the branch lock.

A tagged commit never enters DECIDE, so the cycle ends after one release.
Events for one branch are decided in arrival order; an event that cannot get
the branch lock waits at the head of its branch queue.
"""

from __future__ import annotations

import threading
import uuid
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import UTC, datetime

from relorch.core.config import OrchestratorConfig
from relorch.core.deadline import Deadline
from relorch.core.result import Err, Ok, Result
from relorch.orchestrator.locks import BranchLocks
from relorch.orchestrator.notify import NotificationSink
from relorch.output.console import ConsoleProtocol, Style
from relorch.pipeline.deadline import run_with_deadline
from relorch.pipeline.executor import Executor
from relorch.pipeline.run import Phase, PipelineRun, RunKind, RunNotification
from relorch.release.cutter import ReleaseCutter
from relorch.release.decision import decide
from relorch.release.errors import ReleaseError
from relorch.release.ledger import LedgerReadError, LedgerStore
from relorch.release.model import CommitEvent, CutRelease, NoRelease, ReleaseRecord
from relorch.release.ports import CommitSource
from relorch.release.semver import is_release_tag

__all__ = ["Orchestrator"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_run_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True, slots=True)
class _Decided:
    outcome: str
    execute: ReleaseRecord | None = None


@dataclass(frozen=True, slots=True)
class _Contended:
    run: PipelineRun


@dataclass(slots=True)
class _Pending:
    event: CommitEvent
    future: Future[PipelineRun | None]
    run: PipelineRun | None = None


class Orchestrator:
    def __init__(
        self,
        *,
        source: CommitSource,
        ledger: LedgerStore,
        cutter: ReleaseCutter,
        executor: Executor,
        sink: NotificationSink,
        console: ConsoleProtocol,
        config: OrchestratorConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
        new_run_id: Callable[[], str] = _new_run_id,
    ) -> None:
        self._source = source
        self._ledger = ledger
        self._cutter = cutter
        self._executor = executor
        self._sink = sink
        self._console = console
        self._config = config or OrchestratorConfig()
        self._clock = clock
        self._new_run_id = new_run_id

        self._locks = BranchLocks()
        self._mutex = threading.RLock()
        self._active: dict[tuple[str, RunKind], str] = {}
        self._runs: dict[str, PipelineRun] = {}
        self._history: deque[PipelineRun] = deque(maxlen=self._config.history_size)
        self._cancelled: set[str] = set()
        self._pending: dict[str, deque[_Pending]] = {}
        self._draining: set[str] = set()
        self._timers: set[threading.Timer] = set()
        self._stopping = False
        self._pool = ThreadPoolExecutor(
            max_workers=self._config.max_workers, thread_name_prefix="relorch"
        )

    # -- public API ---------------------------------------------------------

    @property
    def locks(self) -> BranchLocks:
        return self._locks

    def active_runs(self) -> tuple[PipelineRun, ...]:
        with self._mutex:
            return tuple(self._runs.values())

    def history(self) -> tuple[PipelineRun, ...]:
        """The most recent terminal runs, oldest first, up to ``history_size``."""
        with self._mutex:
            return tuple(self._history)

    def pending(self, branch: str) -> int:
        with self._mutex:
            return len(self._pending.get(branch, ()))

    def handle(self, event: CommitEvent) -> PipelineRun | None:
        """Process ``event`` in the calling thread.

        Returns the terminal run, or None when the event was a duplicate or
        had to wait for the branch lock (it is then queued, not dropped).
        """
        with self._mutex:
            if self._pending.get(event.branch):
                self._park(_Pending(event=event, future=Future()))
                return None

        outcome = self._process(event)
        if isinstance(outcome, _Contended):
            self._park(_Pending(event=event, future=Future(), run=outcome.run))
            self._schedule_requeue()
            return None
        return outcome

    def submit(self, event: CommitEvent) -> Future[PipelineRun | None] | None:
        """Process ``event`` on the worker pool.

        Returns None when an identical run is already active, otherwise a
        future resolving to the terminal run (or None for a late duplicate).
        """
        if self._stopping:
            raise RuntimeError("orchestrator is shut down")

        routed = self._route(event)
        if isinstance(routed, Err):
            return self._pool.submit(self._reject, event, routed.error)

        record = routed.value
        if record is not None:
            key = (event.commit.id, RunKind.EXECUTE)
            with self._mutex:
                if key in self._active or self._was_executed(event.commit.id):
                    self._duplicate(event, RunKind.EXECUTE)
                    return None
            return self._pool.submit(self._start_execute, event, record)

        future: Future[PipelineRun | None] = Future()
        with self._mutex:
            queued = self._pending.get(event.branch, ())
            key = (event.commit.id, RunKind.DECIDE)
            if key in self._active or any(p.event.commit.id == event.commit.id for p in queued):
                self._duplicate(event, RunKind.DECIDE)
                return None
            self._park(_Pending(event=event, future=future))
        self._pool.submit(self._drain, event.branch)
        return future

    def watch(self, branch: str) -> None:
        """Submit every event from ``source.subscribe(branch)`` until shutdown."""
        self._console.print(f"{branch}: watching for commits", Style.DIM)
        for event in self._source.subscribe(branch):
            if self._stopping:
                break
            self.submit(event)

    def cancel(self, run_id: str) -> bool:
        """Request cancellation before the next phase. False if the run is not active."""
        with self._mutex:
            if run_id not in self._runs:
                return False
            self._cancelled.add(run_id)
        self._console.warning(f"cancellation requested for {run_id}")
        return True

    def retry_pending(self) -> list[PipelineRun]:
        """Process queued events of every branch in the calling thread."""
        with self._mutex:
            branches = [b for b, queue in self._pending.items() if queue]
        done: list[PipelineRun] = []
        for branch in branches:
            done.extend(self._drain(branch))
        return done

    def shutdown(self, *, wait: bool = True) -> None:
        self._stopping = True
        with self._mutex:
            timers = list(self._timers)
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        self._pool.shutdown(wait=wait)

    # -- routing ------------------------------------------------------------

    def _route(self, event: CommitEvent) -> Result[ReleaseRecord | None, ReleaseError]:
        """The release to EXECUTE for ``event``, or None to DECIDE."""
        try:
            for tag in sorted(event.commit.tags):
                if not is_release_tag(tag):
                    continue
                record = self._ledger.get_by_tag(tag)
                if record is not None and record.commit_id == event.commit.id:
                    return Ok(record)
        except LedgerReadError as e:
            return Err(e.error)
        return Ok(None)

    def _process(
        self, event: CommitEvent, parked: PipelineRun | None = None
    ) -> PipelineRun | _Contended | None:
        if parked is None:
            routed = self._route(event)
            if isinstance(routed, Err):
                return self._reject(event, routed.error)
            if routed.value is not None:
                return self._start_execute(event, routed.value)

        run = self._begin(event, RunKind.DECIDE, parked=parked)
        if run is None:
            return None
        return self._run_decision(run, event)

    def _reject(self, event: CommitEvent, error: ReleaseError) -> PipelineRun | None:
        """Report an event that could not even be routed as a failed DECIDE run."""
        run = self._begin(event, RunKind.DECIDE)
        if run is None:
            return None
        return self._finish(run.fail(error, at=self._clock()))

    def _start_execute(self, event: CommitEvent, record: ReleaseRecord) -> PipelineRun | None:
        run = self._begin(event, RunKind.EXECUTE, tag=record.tag)
        if run is None:
            return None
        return self._execute(run, event, record)

    # -- run bookkeeping ----------------------------------------------------

    def _begin(
        self,
        event: CommitEvent,
        kind: RunKind,
        *,
        tag: str | None = None,
        parked: PipelineRun | None = None,
    ) -> PipelineRun | None:
        key = (event.commit.id, kind)
        with self._mutex:
            if parked is not None:
                run = parked.retried()
                self._runs[run.id] = run
                return run

            if key in self._active or (
                kind is RunKind.EXECUTE and self._was_executed(event.commit.id)
            ):
                self._duplicate(event, kind)
                return None

            run = PipelineRun(
                id=self._new_run_id(),
                branch=event.branch,
                triggering_commit_id=event.commit.id,
                kind=kind,
                phase=Phase.DETECTING,
                started_at=self._clock(),
                tag=tag,
            )
            self._active[key] = run.id
            self._runs[run.id] = run
        return run

    def _duplicate(self, event: CommitEvent, kind: RunKind) -> None:
        self._console.print(
            f"{event.branch}: {kind} {event.commit.short_id} already handled, skipping", Style.DIM
        )

    def _update(self, run: PipelineRun) -> None:
        with self._mutex:
            if run.id in self._runs:
                self._runs[run.id] = run

    def _current(self, run: PipelineRun) -> PipelineRun:
        with self._mutex:
            return self._runs.get(run.id, run)

    def _finish(self, run: PipelineRun) -> PipelineRun:
        with self._mutex:
            self._runs.pop(run.id, None)
            self._active.pop((run.triggering_commit_id, run.kind), None)
            self._cancelled.discard(run.id)
            self._history.append(run)
        self._sink.notify(RunNotification.from_run(run))
        return run

    def _is_cancelled(self, run_id: str) -> bool:
        with self._mutex:
            return run_id in self._cancelled

    def _was_executed(self, commit_id: str) -> bool:
        """Whether a recent EXECUTE run of ``commit_id`` reached a terminal state.

        Only the bounded history is consulted. An execution evicted from it
        may run again on re-delivery, which converges: the image reference
        is content-addressed and the deployment is declarative.
        """
        with self._mutex:
            return any(
                r.kind is RunKind.EXECUTE and r.triggering_commit_id == commit_id
                for r in self._history
            )

    # -- deciding -----------------------------------------------------------

    def _run_decision(self, run: PipelineRun, event: CommitEvent) -> PipelineRun | _Contended:
        branch = event.branch
        if not self._locks.acquire(branch, timeout=self._config.lock_wait_seconds):
            self._console.print(
                f"{branch}: lock busy, {event.commit.short_id} queued "
                f"(attempt {run.attempt_count})",
                Style.DIM,
            )
            return _Contended(run)

        def locked(deadline: Deadline) -> Result[_Decided, ReleaseError]:
            try:
                return self._decide_and_cut(run, event, deadline)
            except LedgerReadError as e:
                return Err(e.error)
            finally:
                self._locks.release(branch)

        # A decision past its deadline is refused the ledger append, so a
        # timeout report never hides a release; one that appended in time
        # is waited for and reported as it ends.
        result = run_with_deadline(
            locked,
            seconds=self._config.decision_timeout_seconds,
            what="decision",
            crash_kind="invalid_input",
        )

        current = self._current(run)
        if isinstance(result, Err):
            return self._finish(current.fail(result.error, at=self._clock()))

        decided = result.value
        done = self._finish(current.succeed(at=self._clock(), outcome=decided.outcome))
        if decided.execute is None:
            return done

        executing = self._begin(event, RunKind.EXECUTE, tag=decided.execute.tag)
        if executing is None:
            return done
        return self._execute(executing, event, decided.execute)

    def _decide_and_cut(
        self, run: PipelineRun, event: CommitEvent, deadline: Deadline
    ) -> Result[_Decided, ReleaseError]:
        branch = event.branch
        head = event.commit

        if self._is_cancelled(run.id):
            return Err(ReleaseError(kind="cancelled", message="cancelled before deciding"))

        # The tag may have been pushed before its record became visible.
        record = self._ledger.get_by_commit(head.id)
        if record is not None and record.tag in head.tags:
            return Ok(_Decided(outcome=f"{record.tag} already cut, executing", execute=record))

        latest = self._ledger.get_latest(branch)
        if latest is not None:
            if deadline.expired:
                return Err(_decision_expired(branch, "reconciling"))
            repaired = self._cutter.reconcile(latest)
            if isinstance(repaired, Err):
                return repaired

        lookup = self._source.history_lookup()
        decision = decide(branch=branch, head=head, latest=latest, lookup=lookup)
        if isinstance(decision, Err):
            return decision

        match decision.value:
            case NoRelease(reason=reason):
                self._console.print(f"{branch}: {head.short_id}: {reason}", Style.DIM)
                return Ok(_Decided(outcome=reason))
            case CutRelease(bump=bump, commits=commits):
                self._update(self._current(run).advance(Phase.RELEASING))
                cut = self._cutter.cut(
                    branch=branch,
                    head=head,
                    bump=bump,
                    source_commits=commits,
                    deadline=deadline,
                )
                if isinstance(cut, Err):
                    if cut.error.is_idempotent_success:
                        self._console.print(f"{branch}: {cut.error.message}", Style.DIM)
                        return Ok(_Decided(outcome=cut.error.message))
                    return cut
                self._update(replace(self._current(run), tag=cut.value.tag))
                return Ok(_Decided(outcome=f"cut {cut.value.tag}"))

    # -- executing ----------------------------------------------------------

    def _execute(self, run: PipelineRun, event: CommitEvent, record: ReleaseRecord) -> PipelineRun:
        done = self._executor.execute(
            run,
            commit=event.commit,
            record=record,
            on_transition=self._update,
            cancel_requested=lambda: self._is_cancelled(run.id),
        )
        return self._finish(done)

    # -- pending queue ------------------------------------------------------

    def _park(self, entry: _Pending) -> None:
        with self._mutex:
            self._pending.setdefault(entry.event.branch, deque()).append(entry)

    def _schedule_requeue(self) -> None:
        if self._stopping:
            return
        timer = threading.Timer(
            self._config.requeue_delay_seconds, lambda: self._requeue(timer)
        )
        timer.daemon = True
        with self._mutex:
            self._timers.add(timer)
        timer.start()

    def _requeue(self, timer: threading.Timer) -> None:
        with self._mutex:
            self._timers.discard(timer)
        if not self._stopping:
            self.retry_pending()

    def _drain(self, branch: str) -> list[PipelineRun]:
        with self._mutex:
            if branch in self._draining:
                return []
            self._draining.add(branch)

        done: list[PipelineRun] = []
        while True:
            with self._mutex:
                queue = self._pending.get(branch)
                if not queue:
                    self._draining.discard(branch)
                    return done
                entry = queue[0]

            try:
                outcome = self._process(entry.event, parked=entry.run)
            except Exception as e:
                self._console.error(
                    f"{branch}: {entry.event.commit.short_id}: {type(e).__name__}: {e}"
                )
                with self._mutex:
                    queue.popleft()
                entry.future.set_exception(e)
                continue

            if isinstance(outcome, _Contended):
                with self._mutex:
                    entry.run = outcome.run
                    self._draining.discard(branch)
                self._schedule_requeue()
                return done

            with self._mutex:
                queue.popleft()
            entry.future.set_result(outcome)
            if outcome is not None:
                done.append(outcome)


def _decision_expired(branch: str, before: str) -> ReleaseError:
    return ReleaseError(
        kind="timeout",
        message=f"{branch}: decision deadline passed before {before}",
        hint="Nothing was recorded; the next event on this branch decides again.",
    )
