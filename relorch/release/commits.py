"""Conventional commit classification.

The subject line must match::

    ^(fix|feat|chore|docs|refactor|test|ci)(\\(.+\\))?(!)?: .+

``fix`` is a patch, ``feat`` a minor, every other type is NONE. A ``!``
after the type, or a body line starting with ``BREAKING CHANGE:``, makes it a
major. Anything that does not match is NONE: classification is total and
never raises, so an odd commit can neither block nor trigger a release.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from relorch.release.model import BumpKind, Commit

__all__ = [
    "COMMIT_TYPES",
    "ParsedCommit",
    "classify",
    "max_bump",
    "parse_message",
]

COMMIT_TYPES: tuple[str, ...] = ("fix", "feat", "chore", "docs", "refactor", "test", "ci")

_SUBJECT_RE = re.compile(r"^(fix|feat|chore|docs|refactor|test|ci)(\(.+\))?(!)?: .+")
_BREAKING_PREFIX = "BREAKING CHANGE:"

_TYPE_BUMPS: dict[str, BumpKind] = {
    "fix": BumpKind.PATCH,
    "feat": BumpKind.MINOR,
}


@dataclass(frozen=True, slots=True)
class ParsedCommit:
    """Structured view of a commit message."""

    commit_type: str | None
    scope: str | None
    description: str
    is_breaking: bool
    bump: BumpKind

    @property
    def is_conventional(self) -> bool:
        return self.commit_type is not None


def parse_message(message: str) -> ParsedCommit:
    lines = message.splitlines()
    subject = lines[0] if lines else ""

    m = _SUBJECT_RE.match(subject)
    if m is None:
        return ParsedCommit(
            commit_type=None,
            scope=None,
            description=subject.strip(),
            is_breaking=False,
            bump=BumpKind.NONE,
        )

    commit_type = m.group(1)
    scope = m.group(2)[1:-1] if m.group(2) else None
    bang = m.group(3) is not None
    breaking_body = any(line.startswith(_BREAKING_PREFIX) for line in lines[1:])
    is_breaking = bang or breaking_body

    # Highest severity wins: a breaking fix is still a major.
    bump = BumpKind.MAJOR if is_breaking else _TYPE_BUMPS.get(commit_type, BumpKind.NONE)

    # Everything after the "type(scope)!: " prefix; the scope may itself contain ": ".
    prefix_end = max(m.end(1), m.end(2), m.end(3)) + len(": ")
    description = subject[prefix_end:].strip()
    return ParsedCommit(
        commit_type=commit_type,
        scope=scope,
        description=description,
        is_breaking=is_breaking,
        bump=bump,
    )


def classify(message: str) -> BumpKind:
    return parse_message(message).bump


def max_bump(commits: Iterable[Commit]) -> BumpKind:
    """Maximum classification over ``commits``; NONE for an empty range."""
    return max((classify(c.message) for c in commits), default=BumpKind.NONE)
