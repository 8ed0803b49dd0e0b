"""CommitSource backed by the git CLI.

The remote is the source of truth: tags are pushed to it and history is read
from the remote-tracking branch after a fetch. All commands go through
``relorch.platform.process.run`` so failures arrive as values.

Usage:
    source = GitCommitSource(Path("."), remote="origin")
    match source.resolve_tag("v1.2.0"):
        case Ok(None):
            print("tag is free")
        case Ok(commit_id):
            print(f"tag points at {commit_id}")
        case Err(e):
            print(e.pretty())
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path

from relorch.core.result import Err, Ok, Result
from relorch.platform.process import ProcessError, is_transient
from relorch.platform.process import run as run_process
from relorch.release.decision import CommitLookup
from relorch.release.errors import ErrorKind, ReleaseError
from relorch.release.model import Commit, CommitEvent
from relorch.release.semver import is_release_tag

__all__ = ["FirstParentReader", "GitCommitSource"]

_GIT_TIMEOUT_SECONDS = 30.0
_GIT_NETWORK_TIMEOUT_SECONDS = 3 * 60.0
_NETWORK_COMMANDS = frozenset({"fetch", "push", "ls-remote"})

_FIELD_SEP = "\x00"
_RECORD_SEP = "\x1e"
_SHOW_FORMAT = "%H%x00%P%x00%ct%x00%B"
_LOG_FORMAT = _SHOW_FORMAT + "%x1e"

# Commits read per `git log` call when walking history.
_HISTORY_PAGE = 500


class GitCommitSource:
    """Commits, tags and branch heads of one repository and its remote."""

    def __init__(
        self,
        path: Path,
        *,
        remote: str = "origin",
        poll_interval: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.path = path
        self._remote = remote
        self._poll_interval = poll_interval
        self._sleep = sleep
        # One fetch at a time per repository; concurrent fetches fight over ref locks.
        self._fetch_lock = threading.Lock()

    # -- reads --------------------------------------------------------------

    def get_commit(self, commit_id: str) -> Commit | None:
        """Look up a commit, or None when it is not in the local object store."""
        shown = self._run(["show", "-s", f"--format={_SHOW_FORMAT}", commit_id, "--"])
        if isinstance(shown, Err):
            return None

        commit = _parse_commit(shown.value)
        if commit is None:
            return None
        return replace(
            commit,
            branch_refs=self._branches_containing(commit.id),
            tags=self._tags_at(commit.id),
        )

    def first_parent_log(self, start: str, *, limit: int = _HISTORY_PAGE) -> list[Commit]:
        """Up to ``limit`` commits of the first-parent history from ``start``, newest first.

        One ``git log`` call. The commits carry no branch_refs or tags.
        """
        listed = self._run(
            [
                "log",
                "--first-parent",
                f"--max-count={limit}",
                f"--format={_LOG_FORMAT}",
                start,
                "--",
            ]
        )
        if isinstance(listed, Err):
            return []

        commits: list[Commit] = []
        for chunk in listed.value.split(_RECORD_SEP):
            commit = _parse_commit(chunk.lstrip("\n"))
            if commit is not None:
                commits.append(commit)
        return commits

    def history_lookup(self) -> CommitLookup:
        """A lookup for one first-parent walk, reading history a page at a time."""
        return FirstParentReader(self)

    def resolve_tag(self, tag: str) -> Result[str | None, ReleaseError]:
        """Commit the tag points at on the remote, or None if the tag is free."""
        listed = self._run(["ls-remote", "--tags", self._remote, f"refs/tags/{tag}"])
        if isinstance(listed, Err):
            return Err(_git_error(listed.error, f"could not list tag {tag} on {self._remote}"))

        direct: str | None = None
        for line in listed.value.splitlines():
            sha, _, ref = line.partition("\t")
            # Annotated tags are listed twice; the peeled entry names the commit.
            if ref == f"refs/tags/{tag}^{{}}":
                return Ok(sha.strip())
            if ref == f"refs/tags/{tag}":
                direct = sha.strip()
        return Ok(direct)

    def branch_head(self, branch: str) -> Result[str, ReleaseError]:
        head = self._run(["rev-parse", "--verify", f"refs/remotes/{self._remote}/{branch}"])
        if isinstance(head, Err):
            return Err(_git_error(head.error, f"unknown branch {self._remote}/{branch}"))
        return Ok(head.value.strip())

    # -- writes -------------------------------------------------------------

    def push_tag(self, commit_id: str, tag: str) -> Result[None, ReleaseError]:
        """Create an annotated tag on ``commit_id`` and push it.

        Pushing a tag that already names the same commit is a no-op.
        """
        local = self._run(["rev-parse", "-q", "--verify", f"refs/tags/{tag}^{{commit}}"])
        if isinstance(local, Ok):
            if local.value.strip() != commit_id:
                return Err(_tag_conflict(tag, local.value.strip()))
        else:
            created = self._run(["tag", "-a", tag, "-m", f"Release {tag}", commit_id])
            if isinstance(created, Err):
                return Err(_git_error(created.error, f"could not create tag {tag}"))

        pushed = self._run(["push", self._remote, f"refs/tags/{tag}"])
        if isinstance(pushed, Ok):
            return Ok(None)

        if is_transient(pushed.error):
            return Err(_git_error(pushed.error, f"could not push {tag}"))

        # Rejected: someone else may have pushed the same tag already.
        remote = self.resolve_tag(tag)
        if isinstance(remote, Err):
            return remote
        if remote.value == commit_id:
            return Ok(None)
        if remote.value is not None:
            return Err(_tag_conflict(tag, remote.value))
        return Err(_git_error(pushed.error, f"could not push {tag}"))

    def create_commit(
        self, parent_id: str, message: str, *, branch: str
    ) -> Result[Commit, ReleaseError]:
        """Commit ``parent_id``'s tree unchanged with ``message`` and push it to ``branch``.

        The push is a fast-forward; it fails if the branch moved past ``parent_id``.
        """
        created = self._run(
            ["commit-tree", f"{parent_id}^{{tree}}", "-p", parent_id, "-m", message]
        )
        if isinstance(created, Err):
            return Err(_git_error(created.error, f"could not create commit on {parent_id[:8]}"))
        sha = created.value.strip()

        pushed = self._run(["push", self._remote, f"{sha}:refs/heads/{branch}"])
        if isinstance(pushed, Err):
            return Err(
                _git_error(
                    pushed.error,
                    f"could not push {sha[:8]} to {branch}",
                    kind="invalid_input",
                )
            )

        return Ok(
            Commit(
                id=sha,
                parent_ids=(parent_id,),
                message=message,
                branch_refs=frozenset({branch}),
                timestamp=datetime.now(UTC),
            )
        )

    # -- events -------------------------------------------------------------

    def subscribe(self, branch: str) -> Iterator[CommitEvent]:
        """Poll the remote and yield new first-parent commits and new release tags.

        The current head is yielded once at start. Commits are yielded oldest
        first; a newly pushed release tag yields its commit with ``is_new_tag``.
        """
        last_head: str | None = None
        known_tags: set[str] | None = None

        while True:
            with self._fetch_lock:
                fetched = self._run(["fetch", "--tags", "--prune", self._remote])
            if isinstance(fetched, Err) and not is_transient(fetched.error):
                detail = fetched.error.stderr.strip()
                raise RuntimeError(f"git fetch {self._remote} failed: {detail}")

            if isinstance(fetched, Ok):
                head = self.branch_head(branch)
                if isinstance(head, Err):
                    raise RuntimeError(head.error.pretty())

                for commit_id in self._new_commits(last_head, head.value):
                    commit = self.get_commit(commit_id)
                    if commit is not None:
                        yield CommitEvent(branch=branch, commit=commit)
                last_head = head.value

                tags = self._release_tags()
                if known_tags is not None:
                    for tag in sorted(tags - known_tags):
                        target = self._run(["rev-parse", f"refs/tags/{tag}^{{commit}}"])
                        if isinstance(target, Err):
                            continue
                        commit = self.get_commit(target.value.strip())
                        if commit is not None and commit.is_on(branch):
                            yield CommitEvent(branch=branch, commit=commit, is_new_tag=True)
                known_tags = tags

            self._sleep(self._poll_interval)

    def _new_commits(self, last_head: str | None, head: str) -> list[str]:
        if last_head is None:
            return [head]
        if last_head == head:
            return []
        listed = self._run(["rev-list", "--first-parent", "--reverse", f"{last_head}..{head}"])
        if isinstance(listed, Err):
            # Branch was rewritten; the decision engine reports the divergence.
            return [head]
        return [line.strip() for line in listed.value.splitlines() if line.strip()]

    def _release_tags(self) -> set[str]:
        listed = self._run(["tag", "--list", "v*"])
        if isinstance(listed, Err):
            return set()
        return {t.strip() for t in listed.value.splitlines() if is_release_tag(t.strip())}

    def _branches_containing(self, commit_id: str) -> frozenset[str]:
        listed = self._run(
            [
                "for-each-ref",
                "--format=%(refname)",
                "--contains",
                commit_id,
                "refs/heads",
                f"refs/remotes/{self._remote}",
            ]
        )
        if isinstance(listed, Err):
            return frozenset()

        remote_prefix = f"refs/remotes/{self._remote}/"
        branches: set[str] = set()
        for ref in listed.value.splitlines():
            ref = ref.strip()
            if ref.startswith("refs/heads/"):
                branches.add(ref.removeprefix("refs/heads/"))
            elif ref.startswith(remote_prefix) and not ref.endswith("/HEAD"):
                branches.add(ref.removeprefix(remote_prefix))
        return frozenset(branches)

    def _tags_at(self, commit_id: str) -> frozenset[str]:
        listed = self._run(["tag", "--points-at", commit_id])
        if isinstance(listed, Err):
            return frozenset()
        return frozenset(t.strip() for t in listed.value.splitlines() if t.strip())

    def _run(self, args: list[str]) -> Result[str, ProcessError]:
        """Run a git command in this repository."""
        timeout = (
            _GIT_NETWORK_TIMEOUT_SECONDS if args[0] in _NETWORK_COMMANDS else _GIT_TIMEOUT_SECONDS
        )
        return run_process(["git", "-C", str(self.path), *args], cwd=self.path, timeout=timeout)


class FirstParentReader:
    """Commit lookup backed by paged ``git log --first-parent`` reads.

    A miss loads the page of history starting at the missing commit, so a
    walk over N commits costs about N / page_size git calls instead of
    several per commit.
    """

    def __init__(self, source: GitCommitSource, *, page_size: int = _HISTORY_PAGE) -> None:
        self._source = source
        self._page_size = page_size
        self._cache: dict[str, Commit] = {}

    def __call__(self, commit_id: str) -> Commit | None:
        found = self._cache.get(commit_id)
        if found is None:
            for commit in self._source.first_parent_log(commit_id, limit=self._page_size):
                self._cache.setdefault(commit.id, commit)
            found = self._cache.get(commit_id)
        return found


def _parse_commit(text: str) -> Commit | None:
    parts = text.split(_FIELD_SEP, 3)
    if len(parts) != 4:
        return None
    sha, parents, epoch, message = parts
    if not sha.strip():
        return None
    return Commit(
        id=sha.strip(),
        parent_ids=tuple(parents.split()),
        message=message.strip("\n"),
        timestamp=_parse_epoch(epoch),
    )


def _parse_epoch(value: str) -> datetime | None:
    try:
        return datetime.fromtimestamp(int(value.strip()), tz=UTC)
    except ValueError:
        return None


def _tag_conflict(tag: str, other_commit: str) -> ReleaseError:
    return ReleaseError(
        kind="tag_conflict",
        message=f"tag {tag} already exists on {other_commit[:8]}",
    )


def _git_error(
    error: ProcessError, message: str, *, kind: ErrorKind = "invalid_config"
) -> ReleaseError:
    hint = error.stderr.strip() or None
    if is_transient(error):
        return ReleaseError(kind="transient", message=message, hint=hint)
    return ReleaseError(kind=kind, message=message, hint=hint)
