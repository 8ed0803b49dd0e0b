"""Tests for the release cutter."""

from __future__ import annotations

import threading

import pytest

from relorch.core.config import ReleaseConfig
from relorch.core.deadline import Deadline
from relorch.core.result import Err, Ok, Result
from relorch.output.console import MockConsole
from relorch.release.cutter import ReleaseCutter
from relorch.release.errors import ReleaseError, transient
from relorch.release.ledger import InMemoryLedgerStore, LedgerConflict
from relorch.release.model import BumpKind, ReleaseRecord
from relorch.test.fakes import (
    FakeReleaseStore,
    InMemoryCommitSource,
    Stack,
    commit_id,
    fixed_clock,
    no_sleep,
)


class _RacingLedger(InMemoryLedgerStore):
    """Another writer records the same commit just before every append."""

    def append_if_absent(self, record: ReleaseRecord) -> Result[None, LedgerConflict]:
        super().append_if_absent(record)
        return super().append_if_absent(record)


class _BusyLedger(InMemoryLedgerStore):
    def append_if_absent(self, record: ReleaseRecord) -> Result[None, LedgerConflict]:
        del record
        return Err(LedgerConflict(kind="busy", message="ledger lock held for 10s"))


def _cut_head(stack: Stack, bump: BumpKind = BumpKind.MINOR) -> Result[ReleaseRecord, ReleaseError]:
    head = stack.source.head()
    return stack.cutter().cut(branch="main", head=head, bump=bump, source_commits=(head,))


class TestCut:
    def test_fresh_cut_records_tags_marks_and_publishes(self) -> None:
        stack = Stack()
        commits = stack.source.history("feat(auth): login", "fix: typo")
        head = stack.source.head()

        result = stack.cutter().cut(
            branch="main", head=head, bump=BumpKind.MINOR, source_commits=tuple(commits)
        )

        assert isinstance(result, Ok)
        record = result.value
        assert record.tag == "v0.1.0"
        assert record.commit_id == head.id
        assert stack.ledger.get_by_commit(head.id) == record
        assert stack.source.tag_pushes == [("v0.1.0", head.id)]

        events = stack.source.take_delivered()
        assert events[0].is_new_tag
        assert events[0].commit.id == head.id
        marker = events[1].commit
        assert marker.subject == "chore(release): v0.1.0"
        assert marker.parent_ids == (head.id,)
        assert "## Features" in marker.message

        notes = stack.store.published["v0.1.0"]
        assert "- **auth:** login" in notes
        assert "## Bug Fixes" in notes

    def test_next_release_bumps_from_latest(self) -> None:
        stack = Stack()
        stack.source.history("feat: a")
        assert isinstance(_cut_head(stack), Ok)
        stack.source.history("fix: b")

        result = _cut_head(stack, BumpKind.PATCH)

        assert isinstance(result, Ok)
        assert result.value.tag == "v0.1.1"

    def test_second_cut_of_same_commit_is_already_released(self) -> None:
        stack = Stack()
        stack.source.history("feat: a")
        _cut_head(stack)

        result = _cut_head(stack)

        assert isinstance(result, Err)
        assert result.error.kind == "already_released"
        assert result.error.is_idempotent_success
        assert len(stack.source.tag_pushes) == 1
        assert stack.store.publish_calls == 1

    def test_expired_deadline_writes_nothing(self) -> None:
        stack = Stack()
        stack.source.history("feat: a")
        deadline = Deadline(60.0)
        assert deadline.expire()

        result = stack.cutter().cut(
            branch="main", head=stack.source.head(), bump=BumpKind.MINOR, deadline=deadline
        )

        assert isinstance(result, Err)
        assert result.error.kind == "timeout"
        assert stack.ledger.records() == ()
        assert stack.source.tag_pushes == []
        assert stack.store.publish_calls == 0

    def test_committed_deadline_cuts(self) -> None:
        stack = Stack()
        stack.source.history("feat: a")
        deadline = Deadline(60.0)

        result = stack.cutter().cut(
            branch="main", head=stack.source.head(), bump=BumpKind.MINOR, deadline=deadline
        )

        assert isinstance(result, Ok)
        assert deadline.committed
        assert not deadline.expire()

    def test_lost_append_race_is_already_exists(self) -> None:
        stack = Stack(ledger=_RacingLedger())
        stack.source.history("feat: a")

        result = _cut_head(stack)

        assert isinstance(result, Err)
        assert result.error.kind == "already_exists"
        assert result.error.is_idempotent_success
        assert stack.source.tag_pushes == []

    def test_busy_ledger_is_lock_timeout(self) -> None:
        stack = Stack(ledger=_BusyLedger())
        stack.source.history("feat: a")

        result = _cut_head(stack)

        assert isinstance(result, Err)
        assert result.error.kind == "lock_timeout"
        assert result.error.is_transient
        assert stack.source.tag_pushes == []

    def test_bump_none_is_invalid_input(self) -> None:
        stack = Stack()
        stack.source.history("docs: a")

        result = _cut_head(stack, BumpKind.NONE)

        assert isinstance(result, Err)
        assert result.error.kind == "invalid_input"
        assert stack.ledger.records() == ()

    def test_tag_on_another_commit_is_conflict(self) -> None:
        stack = Stack()
        stack.source.history("feat: a")
        stack.source.force_tag("v0.1.0", commit_id("elsewhere"))

        result = _cut_head(stack)

        assert isinstance(result, Err)
        assert result.error.kind == "tag_conflict"
        assert stack.ledger.records() == ()
        assert stack.store.published == {}

    def test_tag_already_on_head_is_adopted(self) -> None:
        stack = Stack()
        stack.source.history("feat: a")
        stack.source.force_tag("v0.1.0", stack.source.head().id)

        result = _cut_head(stack)

        assert isinstance(result, Ok)
        assert stack.source.tag_pushes == []
        assert "v0.1.0" in stack.store.published

    def test_transient_push_errors_are_retried(self) -> None:
        stack = Stack()
        stack.source.history("feat: a")
        stack.source.push_errors.extend([transient("connection reset")] * 2)

        result = _cut_head(stack)

        assert isinstance(result, Ok)
        assert stack.source.tag_target("v0.1.0") == stack.source.head().id
        assert len(stack.console.find("retry")) == 2

    def test_marker_failure_only_warns(self) -> None:
        stack = Stack()
        stack.source.history("feat: a")
        stack.source.commit_errors.append(
            ReleaseError(kind="invalid_input", message="branch moved")
        )

        result = _cut_head(stack)

        assert isinstance(result, Ok)
        assert stack.console.has_warning()
        assert [e.is_new_tag for e in stack.source.take_delivered()] == [True]
        assert "v0.1.0" in stack.store.published

    def test_marker_commit_can_be_disabled(self) -> None:
        stack = Stack(release_config=ReleaseConfig(marker_commit=False))
        stack.source.history("feat: a")

        assert isinstance(_cut_head(stack), Ok)

        assert [e.is_new_tag for e in stack.source.take_delivered()] == [True]

    def test_marker_template_that_would_release_is_rejected(self) -> None:
        stack = Stack(release_config=ReleaseConfig(marker_message="feat: release {tag}"))

        with pytest.raises(ValueError, match="trigger a release"):
            stack.cutter()


class TestPartialFailure:
    def test_publish_exhausted_then_reconciled(self) -> None:
        stack = Stack()
        stack.source.history("feat: a")
        stack.store.errors.extend([transient("registry down")] * 3)

        result = _cut_head(stack)

        assert isinstance(result, Err)
        assert result.error.kind == "publish_failed"
        record = stack.ledger.get_latest("main")
        assert record is not None
        assert stack.store.published == {}

        repaired = stack.cutter().reconcile(record)

        assert repaired == Ok(True)
        assert "v0.1.0" in stack.store.published
        assert len(stack.source.tag_pushes) == 1

    def test_tag_push_exhausted_then_reconciled(self) -> None:
        stack = Stack()
        stack.source.history("feat: a")
        stack.source.push_errors.extend([transient("connection reset")] * 3)

        result = _cut_head(stack)

        assert isinstance(result, Err)
        assert result.error.kind == "publish_failed"
        record = stack.ledger.get_latest("main")
        assert record is not None
        assert stack.source.tag_target("v0.1.0") is None

        repaired = stack.cutter().reconcile(record)

        assert repaired == Ok(True)
        assert stack.source.tag_target("v0.1.0") == record.commit_id
        assert "v0.1.0" in stack.store.published

    def test_reconcile_complete_release_is_noop(self) -> None:
        stack = Stack()
        stack.source.history("feat: a")
        result = _cut_head(stack)
        assert isinstance(result, Ok)

        assert stack.cutter().reconcile(result.value) == Ok(False)
        assert stack.store.publish_calls == 1

    def test_reconcile_reports_moved_tag(self) -> None:
        stack = Stack()
        stack.source.history("feat: a")
        result = _cut_head(stack)
        assert isinstance(result, Ok)
        stack.source.force_tag("v0.1.0", commit_id("moved"))

        repaired = stack.cutter().reconcile(result.value)

        assert isinstance(repaired, Err)
        assert repaired.error.kind == "tag_conflict"


def test_concurrent_cuts_of_one_commit_release_once() -> None:
    source = InMemoryCommitSource()
    source.history("feat: a", "fix: b")
    head = source.head()
    ledger = InMemoryLedgerStore()
    store = FakeReleaseStore()
    barrier = threading.Barrier(2)
    results: list[Result[ReleaseRecord, ReleaseError]] = []
    lock = threading.Lock()

    def worker() -> None:
        cutter = ReleaseCutter(
            ledger=ledger,
            source=source,
            store=store,
            console=MockConsole(),
            clock=fixed_clock,
            sleep=no_sleep,
        )
        barrier.wait()
        result = cutter.cut(branch="main", head=head, bump=BumpKind.MINOR)
        with lock:
            results.append(result)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    oks = [r for r in results if isinstance(r, Ok)]
    errs = [r for r in results if isinstance(r, Err)]
    assert len(oks) == 1
    assert len(errs) == 1
    assert errs[0].error.kind in ("already_released", "already_exists")
    assert errs[0].error.is_idempotent_success
    assert len(ledger.records()) == 1
    assert source.tag_pushes == [("v0.1.0", head.id)]
