"""Release decision engine.

``decide`` maps a branch head and the branch's latest release to a Decision.
It is pure: history is read through the injected ``lookup`` and nothing is
written anywhere.
"""

from __future__ import annotations

from collections.abc import Callable

from relorch.core.result import Err, Ok, Result
from relorch.release.commits import max_bump
from relorch.release.errors import ReleaseError
from relorch.release.model import BumpKind, Commit, CutRelease, Decision, NoRelease, ReleaseRecord

__all__ = ["CommitLookup", "decide", "unreleased_range"]

CommitLookup = Callable[[str], Commit | None]

# Guards against cyclic or corrupted history graphs.
_MAX_WALK = 1_000_000


def unreleased_range(
    *,
    head: Commit,
    latest: ReleaseRecord | None,
    lookup: CommitLookup,
) -> Result[tuple[Commit, ...] | None, ReleaseError]:
    """Commits after ``latest`` up to ``head`` along first-parent history, oldest first.

    Returns Ok(None) when ``head`` is the latest release commit or one of its
    ancestors (the range is already released).
    """
    stop = latest.commit_id if latest is not None else None
    walked: list[Commit] = []
    current: Commit | None = head

    while current is not None:
        if current.id == stop:
            walked.reverse()
            return Ok(tuple(walked))
        walked.append(current)
        if len(walked) > _MAX_WALK:
            return Err(
                ReleaseError(
                    kind="history_incomplete",
                    message=f"first-parent walk from {head.short_id} did not terminate",
                )
            )

        parent_id = current.first_parent
        if parent_id is None:
            break
        parent = lookup(parent_id)
        if parent is None:
            return Err(
                ReleaseError(
                    kind="history_incomplete",
                    message=f"parent {parent_id[:8]} of {current.short_id} is not available",
                    hint="Fetch full history (no shallow clone) before deciding.",
                )
            )
        current = parent

    if latest is None:
        walked.reverse()
        return Ok(tuple(walked))

    # Reached the root without meeting the latest release. That is fine only
    # when head is already covered by it (a late, out-of-order event).
    covered = _is_ancestor(candidate=head.id, of_id=latest.commit_id, lookup=lookup)
    if isinstance(covered, Err):
        return covered
    if covered.value:
        return Ok(None)

    return Err(
        ReleaseError(
            kind="ledger_diverged",
            message=(
                f"latest release {latest.tag} ({latest.commit_id[:8]}) is not on the "
                f"first-parent history of {head.short_id}"
            ),
            hint="The branch was rewritten after a release; an operator must reconcile the ledger.",
        )
    )


def _is_ancestor(*, candidate: str, of_id: str, lookup: CommitLookup) -> Result[bool, ReleaseError]:
    current = lookup(of_id)
    steps = 0
    while current is not None and steps <= _MAX_WALK:
        if current.id == candidate:
            return Ok(True)
        parent_id = current.first_parent
        if parent_id is None:
            return Ok(False)
        current = lookup(parent_id)
        steps += 1
    if current is None:
        return Ok(False)
    return Err(
        ReleaseError(kind="history_incomplete", message="ancestry walk did not terminate")
    )


def decide(
    *,
    branch: str,
    head: Commit,
    latest: ReleaseRecord | None,
    lookup: CommitLookup,
) -> Result[Decision, ReleaseError]:
    """Decide whether ``head`` warrants a release on ``branch``.

    Args:
        branch: Branch the head belongs to.
        head: Most recent commit of the branch.
        latest: Latest release of the branch, None for an empty ledger.
        lookup: Resolves commit ids to commits (parents of ``head``).

    Returns:
        Ok(NoRelease) when nothing is releasable, Ok(CutRelease) with the
        maximum bump over the unreleased range, Err on invalid input or
        inconsistent history.
    """
    if not head.is_on(branch):
        return Err(
            ReleaseError(
                kind="invalid_input",
                message=f"commit {head.short_id} is not on branch {branch}",
            )
        )

    if latest is not None and latest.branch != branch:
        return Err(
            ReleaseError(
                kind="invalid_input",
                message=f"release {latest.tag} belongs to {latest.branch}, not {branch}",
            )
        )

    span = unreleased_range(head=head, latest=latest, lookup=lookup)
    if isinstance(span, Err):
        return span

    commits = span.value
    if commits is None:
        return Ok(NoRelease(reason=f"{head.short_id} is already released"))
    if not commits:
        return Ok(NoRelease(reason="no commits since last release"))

    bump = max_bump(commits)
    if bump is BumpKind.NONE:
        return Ok(NoRelease(reason="no releasable commits"))

    return Ok(CutRelease(bump=bump, commits=commits))
