"""End-to-end behavior of the orchestrator over in-memory collaborators."""

from __future__ import annotations

import time
from collections.abc import Iterator

import pytest

from relorch.core.config import OrchestratorConfig
from relorch.core.result import Result
from relorch.orchestrator.orchestrator import Orchestrator
from relorch.pipeline.run import Phase, PipelineRun, RunKind
from relorch.release.errors import ReleaseError, transient
from relorch.release.ledger import InMemoryLedgerStore, LedgerConflict, LedgerReadError
from relorch.release.model import ReleaseRecord
from relorch.test.fakes import (
    FakeBuilder,
    FakeReleaseStore,
    InMemoryCommitSource,
    Stack,
    commit_id,
    make_record,
)


class RacingLedger(InMemoryLedgerStore):
    """Another orchestrator records the same commit just before every append."""

    def append_if_absent(self, record: ReleaseRecord) -> Result[None, LedgerConflict]:
        super().append_if_absent(record)
        return super().append_if_absent(record)


class SlowResolveSource(InMemoryCommitSource):
    """Remote tag lookups outlast the decision deadline."""

    def resolve_tag(self, tag: str) -> Result[str | None, ReleaseError]:
        time.sleep(0.5)
        return super().resolve_tag(tag)


class SlowReleaseStore(FakeReleaseStore):
    """Publishing release metadata outlasts the decision deadline."""

    def publish(self, record: ReleaseRecord, notes: str) -> Result[None, ReleaseError]:
        time.sleep(0.5)
        return super().publish(record, notes)


class UnreadableLedger(InMemoryLedgerStore):
    """Every read finds a corrupt ledger file."""

    def _unreadable(self) -> LedgerReadError:
        return LedgerReadError(
            ReleaseError(kind="invalid_config", message="invalid JSON in ledger")
        )

    def get_latest(self, branch: str) -> ReleaseRecord | None:
        raise self._unreadable()

    def get_by_commit(self, commit_id: str) -> ReleaseRecord | None:
        raise self._unreadable()

    def get_by_tag(self, tag: str) -> ReleaseRecord | None:
        raise self._unreadable()


def _short_deadline(seconds: float = 0.2, *, history_size: int = 1000) -> OrchestratorConfig:
    return OrchestratorConfig(
        lock_wait_seconds=0.05,
        decision_timeout_seconds=seconds,
        requeue_delay_seconds=60.0,
        history_size=history_size,
    )


@pytest.fixture
def stack() -> Stack:
    return Stack()


@pytest.fixture
def orch(stack: Stack) -> Iterator[Orchestrator]:
    orchestrator = stack.orchestrator()
    yield orchestrator
    orchestrator.shutdown()


def _handled(orch: Orchestrator, stack: Stack) -> list[PipelineRun | None]:
    """Feed every event the remote delivered back into the orchestrator."""
    return [orch.handle(event) for event in stack.source.take_delivered()]


class TestReleaseCycle:
    def test_commit_cuts_tag_which_deploys_once(self, stack: Stack, orch: Orchestrator) -> None:
        stack.source.history("feat: a", "fix: b")
        head = stack.source.head()

        decided = orch.handle(stack.source.event(head))

        assert decided is not None
        assert decided.kind is RunKind.DECIDE
        assert decided.phase is Phase.SUCCEEDED
        assert decided.outcome == "cut v0.1.0"
        assert decided.tag == "v0.1.0"

        tag_run, marker_run = _handled(orch, stack)

        assert tag_run is not None
        assert tag_run.kind is RunKind.EXECUTE
        assert tag_run.phase is Phase.SUCCEEDED
        assert tag_run.tag == "v0.1.0"
        assert marker_run is not None
        assert marker_run.kind is RunKind.DECIDE
        assert marker_run.outcome == "no releasable commits"

        assert stack.source.take_delivered() == []
        assert stack.builder.builds == [head.id]
        assert [r.tag for r in stack.ledger.records()] == ["v0.1.0"]
        assert [n.status for n in stack.sink.notifications] == ["succeeded"] * 3
        assert orch.active_runs() == ()
        assert len(orch.history()) == 3

    def test_redelivered_events_do_not_rebuild(self, stack: Stack, orch: Orchestrator) -> None:
        stack.source.history("feat: a")
        head = stack.source.head()
        stale = stack.source.event(head)
        orch.handle(stale)
        _handled(orch, stack)

        assert orch.handle(stack.source.event(head)) is None
        again = orch.handle(stale)

        assert again is not None
        assert again.kind is RunKind.DECIDE
        assert again.outcome == "no commits since last release"
        assert stack.builder.builds == [head.id]
        assert len(stack.source.tag_pushes) == 1
        assert len(stack.ledger.records()) == 1

    def test_no_release_for_non_releasable_history(
        self, stack: Stack, orch: Orchestrator
    ) -> None:
        stack.source.history("docs: readme", "chore: deps")

        run = orch.handle(stack.source.event(stack.source.head()))

        assert run is not None
        assert run.phase is Phase.SUCCEEDED
        assert run.outcome == "no releasable commits"
        assert stack.source.take_delivered() == []

    def test_breaking_change_cuts_major_after_minor(
        self, stack: Stack, orch: Orchestrator
    ) -> None:
        stack.source.history("feat: a")
        orch.handle(stack.source.event(stack.source.head()))
        _handled(orch, stack)
        stack.source.commit("feat(api)!: remove v1")

        run = orch.handle(stack.source.event(stack.source.head()))

        assert run is not None
        assert run.tag == "v1.0.0"

    def test_lost_ledger_race_counts_as_success(self) -> None:
        stack = Stack(ledger=RacingLedger())
        orch = stack.orchestrator()
        stack.source.history("feat: a")

        run = orch.handle(stack.source.event(stack.source.head()))
        orch.shutdown()

        assert run is not None
        assert run.phase is Phase.SUCCEEDED
        assert run.outcome is not None
        assert "already released" in run.outcome
        assert stack.source.tag_pushes == []


class TestFailures:
    def test_decision_error_fails_run_and_notifies(self) -> None:
        gone = commit_id("rewritten")
        stack = Stack(ledger=InMemoryLedgerStore((make_record((0, 1, 0), gone),)))
        stack.source.force_tag("v0.1.0", gone)
        stack.store.published["v0.1.0"] = "notes"
        orch = stack.orchestrator()
        stack.source.history("feat: a")

        run = orch.handle(stack.source.event(stack.source.head()))
        orch.shutdown()

        assert run is not None
        assert run.phase is Phase.FAILED
        assert run.failed_phase is Phase.DETECTING
        assert run.error is not None
        assert run.error.kind == "ledger_diverged"
        (note,) = stack.sink.notifications
        assert note.status == "failed"
        assert note.error == run.error

    def test_failed_build_keeps_release_and_is_not_retried(self) -> None:
        stack = Stack(builder=FakeBuilder(error=ReleaseError(kind="build_failed", message="cc")))
        orch = stack.orchestrator()
        stack.source.history("feat: a")
        orch.handle(stack.source.event(stack.source.head()))

        tag_run, _marker = _handled(orch, stack)
        assert tag_run is not None
        again = orch.handle(stack.source.event(tag_run.triggering_commit_id))
        orch.shutdown()

        assert tag_run.phase is Phase.FAILED
        assert tag_run.failed_phase is Phase.BUILDING
        assert stack.target.set_calls == []
        assert [r.tag for r in stack.ledger.records()] == ["v0.1.0"]
        assert again is None
        assert len(stack.builder.builds) == 1

    def test_publish_failure_is_repaired_by_next_event(self) -> None:
        stack = Stack()
        orch = stack.orchestrator()
        stack.source.history("feat: a")
        stack.store.errors.extend([transient("down")] * 3)

        first = orch.handle(stack.source.event(stack.source.head()))
        stack.source.take_delivered()
        stack.source.commit("fix: b")
        second = orch.handle(stack.source.event(stack.source.head()))
        orch.shutdown()

        assert first is not None
        assert first.error is not None
        assert first.error.kind == "publish_failed"
        assert second is not None
        assert second.tag == "v0.1.1"
        assert set(stack.store.published) == {"v0.1.0", "v0.1.1"}


class TestDecisionDeadline:
    def test_timed_out_decision_records_nothing(self) -> None:
        stack = Stack(source=SlowResolveSource(), config=_short_deadline())
        orch = stack.orchestrator()
        stack.source.history("feat: a")

        run = orch.handle(stack.source.event(stack.source.head()))

        assert run is not None
        assert run.phase is Phase.FAILED
        assert run.error is not None
        assert run.error.kind == "timeout"
        (note,) = stack.sink.notifications
        assert note.status == "failed"
        assert note.error is not None
        assert note.error.kind == "timeout"

        # The abandoned decision holds the branch lock until it gives up.
        assert orch.locks.acquire("main", timeout=2.0)
        orch.locks.release("main")
        orch.shutdown()
        assert stack.ledger.records() == ()
        assert stack.source.tag_pushes == []
        assert stack.store.published == {}

    def test_decision_past_its_append_is_waited_for(self) -> None:
        stack = Stack(store=SlowReleaseStore(), config=_short_deadline())
        orch = stack.orchestrator()
        stack.source.history("feat: a")
        head = stack.source.head()

        run = orch.handle(stack.source.event(head))
        orch.shutdown()

        assert run is not None
        assert run.phase is Phase.SUCCEEDED
        assert run.outcome == "cut v0.1.0"
        assert [r.tag for r in stack.ledger.records()] == ["v0.1.0"]
        assert stack.source.tag_pushes == [("v0.1.0", head.id)]
        assert [n.status for n in stack.sink.notifications] == ["succeeded"]

    def test_next_event_decides_again_after_timeout(self) -> None:
        source = SlowResolveSource()
        stack = Stack(source=source, config=_short_deadline())
        orch = stack.orchestrator()
        source.history("feat: a")
        event = source.event(source.head())
        orch.handle(event)
        assert orch.locks.acquire("main", timeout=2.0)
        orch.locks.release("main")
        orch.shutdown()

        patient = Stack(source=source, ledger=stack.ledger, store=stack.store)
        retry = patient.orchestrator()
        run = retry.handle(event)
        retry.shutdown()

        assert run is not None
        assert run.tag == "v0.1.0"
        assert [r.tag for r in stack.ledger.records()] == ["v0.1.0"]


class TestUnreadableLedger:
    def test_decision_fails_and_releases_lock(self) -> None:
        stack = Stack(ledger=UnreadableLedger())
        orch = stack.orchestrator()
        stack.source.history("feat: a")

        run = orch.handle(stack.source.event(stack.source.head()))

        assert run is not None
        assert run.phase is Phase.FAILED
        assert run.error is not None
        assert run.error.kind == "invalid_config"
        assert orch.locks.acquire("main", timeout=0.1)
        orch.locks.release("main")
        orch.shutdown()
        assert stack.source.tag_pushes == []

    def test_routing_failure_is_a_failed_run(self) -> None:
        stack = Stack(ledger=UnreadableLedger())
        orch = stack.orchestrator()
        head = stack.source.commit("feat: a")
        stack.source.force_tag("v0.1.0", head.id)

        future = orch.submit(stack.source.event(head))
        assert future is not None
        run = future.result(timeout=5)
        orch.shutdown()

        assert run is not None
        assert run.kind is RunKind.DECIDE
        assert run.phase is Phase.FAILED
        assert run.error is not None
        assert run.error.message == "invalid JSON in ledger"
        (note,) = stack.sink.notifications
        assert note.status == "failed"


class TestHistory:
    def test_history_keeps_most_recent_runs(self) -> None:
        stack = Stack(config=_short_deadline(5.0, history_size=2))
        orch = stack.orchestrator()
        commits = stack.source.history("docs: a", "docs: b", "docs: c")

        for c in commits:
            orch.handle(stack.source.event(c))
        orch.shutdown()

        assert [r.triggering_commit_id for r in orch.history()] == [c.id for c in commits[1:]]

    def test_executed_release_is_skipped_while_in_history(
        self, stack: Stack, orch: Orchestrator
    ) -> None:
        stack.source.history("feat: a")
        orch.handle(stack.source.event(stack.source.head()))
        tag_run, _marker = _handled(orch, stack)
        assert tag_run is not None

        again = orch.handle(stack.source.event(tag_run.triggering_commit_id))

        assert again is None
        assert len(stack.builder.builds) == 1


class TestContention:
    def test_busy_branch_queues_event_until_retried(
        self, stack: Stack, orch: Orchestrator
    ) -> None:
        stack.source.history("feat: a")
        event = stack.source.event(stack.source.head())
        assert orch.locks.acquire("main", timeout=1)

        assert orch.handle(event) is None
        assert orch.pending("main") == 1
        (waiting,) = orch.active_runs()
        assert waiting.kind is RunKind.DECIDE

        orch.locks.release("main")
        (run,) = orch.retry_pending()

        assert run.id == waiting.id
        assert run.attempt_count == 2
        assert run.tag == "v0.1.0"
        assert orch.pending("main") == 0

    def test_later_events_wait_behind_queued_event(
        self, stack: Stack, orch: Orchestrator
    ) -> None:
        first = stack.source.commit("feat: a")
        second = stack.source.commit("fix: b")
        assert orch.locks.acquire("main", timeout=1)

        assert orch.handle(stack.source.event(first)) is None
        orch.locks.release("main")
        assert orch.handle(stack.source.event(second)) is None
        assert orch.pending("main") == 2

        runs = orch.retry_pending()

        assert [r.tag for r in runs] == ["v0.1.0", "v0.1.1"]

    def test_cancel_queued_run(self, stack: Stack, orch: Orchestrator) -> None:
        stack.source.history("feat: a")
        assert orch.locks.acquire("main", timeout=1)
        orch.handle(stack.source.event(stack.source.head()))
        (waiting,) = orch.active_runs()

        assert orch.cancel(waiting.id)
        assert not orch.cancel("no-such-run")
        orch.locks.release("main")
        (run,) = orch.retry_pending()

        assert run.phase is Phase.FAILED
        assert run.error is not None
        assert run.error.kind == "cancelled"
        assert stack.ledger.records() == ()


class TestWorkerPool:
    def test_submitted_cycle_completes(self, stack: Stack, orch: Orchestrator) -> None:
        stack.source.history("feat: a")

        future = orch.submit(stack.source.event(stack.source.head()))
        assert future is not None
        decided = future.result(timeout=5)

        assert decided is not None
        assert decided.tag == "v0.1.0"

        futures = [orch.submit(e) for e in stack.source.take_delivered()]
        results = [f.result(timeout=5) for f in futures if f is not None]

        assert {r.kind for r in results if r is not None} == {RunKind.DECIDE, RunKind.EXECUTE}
        assert stack.target.desired["app"].endswith(decided.triggering_commit_id)

    def test_events_of_one_branch_are_decided_in_order(
        self, stack: Stack, orch: Orchestrator
    ) -> None:
        first = stack.source.commit("feat: a")
        second = stack.source.commit("fix: b")

        futures = [orch.submit(stack.source.event(c)) for c in (first, second)]
        results = [f.result(timeout=5) for f in futures if f is not None]

        assert [r.tag for r in results if r is not None] == ["v0.1.0", "v0.1.1"]

    def test_duplicate_submit_while_queued_is_dropped(
        self, stack: Stack, orch: Orchestrator
    ) -> None:
        stack.source.history("feat: a")
        event = stack.source.event(stack.source.head())
        assert orch.locks.acquire("main", timeout=1)

        first = orch.submit(event)
        second = orch.submit(event)
        orch.locks.release("main")
        orch.retry_pending()

        assert first is not None
        assert second is None
        result = first.result(timeout=5)
        assert result is not None
        assert result.tag == "v0.1.0"

    def test_watch_submits_subscribed_events(self, stack: Stack, orch: Orchestrator) -> None:
        stack.source.history("feat: a")
        orch.handle(stack.source.event(stack.source.head()))

        orch.watch("main")
        orch.shutdown()

        assert len(stack.builder.builds) == 1
        assert len(orch.history()) == 3

    def test_submit_after_shutdown_raises(self, stack: Stack, orch: Orchestrator) -> None:
        stack.source.history("feat: a")
        orch.shutdown()

        with pytest.raises(RuntimeError):
            orch.submit(stack.source.event(stack.source.head()))

