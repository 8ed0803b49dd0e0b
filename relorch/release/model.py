from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from relorch.release.semver import Version


class BumpKind(IntEnum):
    """Impact of a commit on the version number, ordered by severity."""

    NONE = 0
    PATCH = 1
    MINOR = 2
    MAJOR = 3

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True, slots=True)
class Commit:
    """A commit as reported by source control. Never mutated here."""

    id: str
    parent_ids: tuple[str, ...]
    message: str
    branch_refs: frozenset[str] = frozenset()
    tags: frozenset[str] = frozenset()
    timestamp: datetime | None = None

    @property
    def short_id(self) -> str:
        return self.id[:8]

    @property
    def subject(self) -> str:
        return self.message.split("\n", 1)[0].strip()

    @property
    def first_parent(self) -> str | None:
        return self.parent_ids[0] if self.parent_ids else None

    def is_on(self, branch: str) -> bool:
        return branch in self.branch_refs


@dataclass(frozen=True, slots=True)
class CommitEvent:
    """Notification that ``commit`` appeared on ``branch`` (or was tagged)."""

    branch: str
    commit: Commit
    is_new_tag: bool = False


@dataclass(frozen=True, slots=True)
class ReleaseRecord:
    """One cut release. Created exactly once, then only read."""

    branch: str
    version: Version
    commit_id: str
    created_at: datetime
    bump_kind: BumpKind
    source_commits: tuple[Commit, ...] = field(default=())

    @property
    def tag(self) -> str:
        return self.version.to_tag()


@dataclass(frozen=True, slots=True)
class NoRelease:
    """Nothing releasable since the last release."""

    reason: str = "no releasable commits"


@dataclass(frozen=True, slots=True)
class CutRelease:
    """Cut a release with ``bump``; ``commits`` is the unreleased range, oldest first."""

    bump: BumpKind
    commits: tuple[Commit, ...] = ()


Decision = NoRelease | CutRelease
