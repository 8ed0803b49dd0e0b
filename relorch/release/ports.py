"""Interfaces the release side consumes from source control and the release store."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Protocol

from relorch.core.result import Result
from relorch.release.decision import CommitLookup
from relorch.release.errors import ReleaseError
from relorch.release.model import Commit, CommitEvent, ReleaseRecord

__all__ = ["CommitSource", "ReleaseStore"]


class CommitSource(Protocol):
    """Source control as seen by the orchestrator.

    ``push_tag`` must be idempotent for a tag that already points at the same
    commit, and must report ``tag_conflict`` for a tag pointing elsewhere.
    Pushing a tag makes ``subscribe`` yield a CommitEvent with
    ``is_new_tag=True`` for the tagged commit. ``history_lookup`` returns
    a lookup for one first-parent walk; its commits need only ids, parents
    and messages.
    """

    def subscribe(self, branch: str) -> Iterator[CommitEvent]: ...

    def get_commit(self, commit_id: str) -> Commit | None: ...

    def history_lookup(self) -> CommitLookup: ...

    def resolve_tag(self, tag: str) -> Result[str | None, ReleaseError]: ...

    def push_tag(self, commit_id: str, tag: str) -> Result[None, ReleaseError]: ...

    def create_commit(
        self, parent_id: str, message: str, *, branch: str
    ) -> Result[Commit, ReleaseError]: ...


class ReleaseStore(Protocol):
    """Where release metadata is published (e.g. a hosted releases page)."""

    def publish(self, record: ReleaseRecord, notes: str) -> Result[None, ReleaseError]: ...

    def is_published(self, tag: str) -> Result[bool, ReleaseError]: ...
