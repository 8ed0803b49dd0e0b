"""Release cutter: turns a CutRelease decision into exactly one release.

Order of side effects for a fresh cut:

1. ledger ``append_if_absent`` (the idempotency boundary; the loser of a
   race stops here with ``already_released``)
2. push the version tag onto the head commit (the self-trigger)
3. create the marker commit carrying the release notes
4. publish release metadata

Steps 2-4 are retried for transient errors. If retries run out the record
stays in the ledger and ``reconcile`` later finishes the missing steps
without ever creating a second tag.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TypeVar

from relorch.core.config import ReleaseConfig
from relorch.core.deadline import Deadline
from relorch.core.result import Err, Ok, Result
from relorch.core.retry import RetryPolicy, call_with_retry
from relorch.output.console import ConsoleProtocol, Style
from relorch.release.commits import classify
from relorch.release.errors import ReleaseError
from relorch.release.ledger import LedgerConflict, LedgerStore
from relorch.release.model import BumpKind, Commit, ReleaseRecord
from relorch.release.notes import marker_commit_message, render_release_notes
from relorch.release.ports import CommitSource, ReleaseStore
from relorch.release.semver import INITIAL_VERSION

__all__ = ["ReleaseCutter"]

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ReleaseCutter:
    """Cuts releases for any branch.

    The caller must hold the branch lock for the duration of ``cut`` and
    ``reconcile``; the ledger primitive still protects against writers in
    other processes.
    """

    def __init__(
        self,
        *,
        ledger: LedgerStore,
        source: CommitSource,
        store: ReleaseStore,
        console: ConsoleProtocol,
        release_config: ReleaseConfig | None = None,
        publish_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._ledger = ledger
        self._source = source
        self._store = store
        self._console = console
        self._config = release_config or ReleaseConfig()
        self._policy = publish_policy or RetryPolicy(max_attempts=5, base_delay=0.5, max_delay=8.0)
        self._clock = clock
        self._sleep = sleep

        sample = self._config.marker_message.format(tag="v0.0.0")
        if classify(sample) is not BumpKind.NONE:
            raise ValueError(
                f"marker message would itself trigger a release: {sample.splitlines()[0]!r}"
            )

    def cut(
        self,
        *,
        branch: str,
        head: Commit,
        bump: BumpKind,
        source_commits: tuple[Commit, ...] = (),
        deadline: Deadline | None = None,
    ) -> Result[ReleaseRecord, ReleaseError]:
        """Cut the next release of ``branch`` at ``head``.

        Returns:
            Ok(record) when this call cut the release.
            Err(already_released) when ``head`` already has a release.
            Err(already_exists) when a concurrent writer recorded ``head`` first.
            Err(tag_conflict) when the next tag name is taken.
            Err(publish_failed) when tag push or metadata publish exhausted
            retries; the record exists and ``reconcile`` completes it.
            Err(timeout) when ``deadline`` expired before the record was
            written; nothing was written.
        """
        if bump is BumpKind.NONE:
            return Err(
                ReleaseError(kind="invalid_input", message="cannot cut a release with bump none")
            )

        existing = self._ledger.get_by_commit(head.id)
        if existing is not None:
            return Err(
                ReleaseError(
                    kind="already_released",
                    message=f"{head.short_id} already released as {existing.tag}",
                )
            )

        latest = self._ledger.get_latest(branch)
        base = latest.version if latest is not None else INITIAL_VERSION
        version = base.bump(bump)
        tag = version.to_tag()

        recorded = self._ledger.get_by_tag(tag)
        if recorded is not None and recorded.commit_id == head.id:
            return Err(
                ReleaseError(
                    kind="already_released",
                    message=f"{head.short_id} already released as {tag}",
                )
            )
        if recorded is not None:
            return Err(_tag_conflict(tag, recorded.commit_id))

        target = self._resolve_tag(tag)
        if isinstance(target, Err):
            return target
        if target.value is not None and target.value != head.id:
            return Err(_tag_conflict(tag, target.value))

        record = ReleaseRecord(
            branch=branch,
            version=version,
            commit_id=head.id,
            created_at=self._clock(),
            bump_kind=bump,
            source_commits=source_commits,
        )

        if deadline is not None and not deadline.commit():
            return Err(
                ReleaseError(
                    kind="timeout",
                    message=f"{branch}: deadline passed before recording {tag}",
                    hint="Nothing was recorded; the next event on this branch decides again.",
                )
            )

        appended = self._ledger.append_if_absent(record)
        if isinstance(appended, Err):
            return Err(_from_conflict(appended.error))

        self._console.print(
            f"{branch}: recorded {tag} for {head.short_id} ({bump}, {len(source_commits)} commits)",
            Style.DIM,
        )

        if target.value is None:
            pushed = self._push_tag_and_marker(record)
            if isinstance(pushed, Err):
                return pushed

        published = self._publish(record)
        if isinstance(published, Err):
            return published

        self._console.success(f"{branch}: released {tag} at {head.short_id}")
        return Ok(record)

    def reconcile(self, record: ReleaseRecord) -> Result[bool, ReleaseError]:
        """Finish a release whose tag push or metadata publish did not complete.

        Returns:
            Ok(True) if something was repaired, Ok(False) if the release was
            already complete.
        """
        repaired = False

        target = self._resolve_tag(record.tag)
        if isinstance(target, Err):
            return target
        if target.value is not None and target.value != record.commit_id:
            return Err(_tag_conflict(record.tag, target.value))
        if target.value is None:
            self._console.warning(f"{record.tag}: tag missing, pushing it again")
            pushed = self._push_tag_and_marker(record)
            if isinstance(pushed, Err):
                return pushed
            repaired = True

        published = self._retry(lambda: self._store.is_published(record.tag))
        if isinstance(published, Err):
            return Err(_publish_failed(record, published.error))
        if not published.value:
            self._console.warning(f"{record.tag}: metadata missing, publishing it again")
            done = self._publish(record)
            if isinstance(done, Err):
                return done
            repaired = True

        return Ok(repaired)

    def _retry(self, fn: Callable[[], Result[T, ReleaseError]]) -> Result[T, ReleaseError]:
        def on_retry(attempt: int, error: ReleaseError) -> None:
            self._console.print(f"retry {attempt}: {error.message}", Style.DIM)

        return call_with_retry(
            fn,
            policy=self._policy,
            is_retryable=lambda e: e.is_transient,
            sleep=self._sleep,
            on_retry=on_retry,
        )

    def _resolve_tag(self, tag: str) -> Result[str | None, ReleaseError]:
        return self._retry(lambda: self._source.resolve_tag(tag))

    def _push_tag_and_marker(self, record: ReleaseRecord) -> Result[None, ReleaseError]:
        pushed = self._retry(lambda: self._source.push_tag(record.commit_id, record.tag))
        if isinstance(pushed, Err):
            if pushed.error.kind == "tag_conflict":
                return pushed
            return Err(_publish_failed(record, pushed.error))

        if not self._config.marker_commit:
            return Ok(None)

        message = marker_commit_message(
            template=self._config.marker_message,
            record=record,
            notes=render_release_notes(record),
        )
        marker = self._retry(
            lambda: self._source.create_commit(record.commit_id, message, branch=record.branch)
        )
        if isinstance(marker, Err):
            # The tag is authoritative; a missing marker only loses the written notes.
            self._console.warning(
                f"{record.tag}: marker commit not created: {marker.error.message}"
            )
        else:
            self._console.print(f"{record.tag}: marker commit {marker.value.short_id}", Style.DIM)
        return Ok(None)

    def _publish(self, record: ReleaseRecord) -> Result[None, ReleaseError]:
        notes = render_release_notes(record)
        published = self._retry(lambda: self._store.publish(record, notes))
        if isinstance(published, Err):
            return Err(_publish_failed(record, published.error))
        return Ok(None)


def _tag_conflict(tag: str, other_commit: str) -> ReleaseError:
    return ReleaseError(
        kind="tag_conflict",
        message=f"tag {tag} already exists on {other_commit[:8]}",
        hint="The ledger and the repository disagree; inspect the tag before releasing again.",
    )


def _publish_failed(record: ReleaseRecord, cause: ReleaseError) -> ReleaseError:
    return ReleaseError(
        kind="publish_failed",
        message=f"{record.tag}: {cause.message}",
        hint="The release is recorded; the next run on this branch completes it.",
    )


def _from_conflict(conflict: LedgerConflict) -> ReleaseError:
    match conflict.kind:
        case "already_exists":
            return ReleaseError(kind="already_exists", message=conflict.message)
        case "tag_taken" | "not_monotonic":
            return ReleaseError(kind="tag_conflict", message=conflict.message)
        case "busy":
            return ReleaseError(kind="lock_timeout", message=conflict.message)
        case "unavailable":
            return ReleaseError(kind="transient", message=f"ledger unavailable: {conflict.message}")
