"""Builder, artifact registry and quality checks driven by configured commands.

Commands are argument lists from relorch.toml. ``{name}`` placeholders in an
argument are replaced before running; everything else is passed through
untouched. All commands go through ``relorch.platform.process.run``.

Placeholders:
    build.command      {commit} {checkout}
    build.checks       {artifact} {commit}
    registry.push      {artifact} {ref}
    registry.exists    {ref}
"""

from __future__ import annotations

import tempfile
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path

from relorch.core.config import BuildConfig, CheckConfig, RegistryConfig
from relorch.core.result import Err, Ok, Result
from relorch.output.console import ConsoleProtocol, Style
from relorch.pipeline.ports import Artifact, CheckKind, QualityCheck
from relorch.platform.process import ProcessError, is_transient
from relorch.platform.process import run as run_process
from relorch.release.errors import ErrorKind, ReleaseError
from relorch.release.model import Commit

__all__ = ["CommandArtifactRegistry", "CommandBuilder", "command_check", "expand"]

_GIT_TIMEOUT_SECONDS = 5 * 60.0
_HINT_LINES = 5


def expand(template: Sequence[str], values: Mapping[str, str]) -> list[str]:
    """Replace ``{name}`` placeholders in every argument of ``template``."""
    out: list[str] = []
    for arg in template:
        for name, value in values.items():
            arg = arg.replace("{" + name + "}", value)
        out.append(arg)
    return out


def _hint(error: ProcessError) -> str | None:
    text = (error.stderr or error.stdout).strip()
    if not text:
        return None
    return "\n".join(text.splitlines()[-_HINT_LINES:])


def _command_error(kind: ErrorKind, message: str, error: ProcessError) -> ReleaseError:
    if is_transient(error):
        kind = "transient"
    return ReleaseError(kind=kind, message=f"{message}: {error}", hint=_hint(error))


@contextmanager
def _staged(content: bytes, name: str) -> Iterator[Path]:
    """Artifact bytes as a file for the duration of the block."""
    with tempfile.TemporaryDirectory(prefix="relorch-") as tmp:
        path = Path(tmp) / name
        path.write_bytes(content)
        yield path


class CommandBuilder:
    """Builds a commit with ``build.command`` in a detached git worktree.

    The worktree lives under ``build.workdir`` and is removed after the
    build; the artifact is the file ``build.artifact`` left in it.
    """

    def __init__(
        self,
        root: Path,
        config: BuildConfig,
        *,
        console: ConsoleProtocol,
        timeout: float | None = None,
    ) -> None:
        self._root = root
        self._config = config
        self._console = console
        self._timeout = timeout

    def build(self, commit: Commit) -> Result[Artifact, ReleaseError]:
        checkout = self._root / self._config.workdir / commit.id
        if checkout.exists():
            self._remove_checkout(checkout)

        added = self._git("worktree", "add", "--force", "--detach", str(checkout), commit.id)
        if isinstance(added, Err):
            return Err(
                _command_error(
                    "build_failed", f"could not check out {commit.short_id}", added.error
                )
            )

        try:
            return self._build_in(checkout, commit)
        finally:
            self._remove_checkout(checkout)

    def _build_in(self, checkout: Path, commit: Commit) -> Result[Artifact, ReleaseError]:
        cmd = expand(self._config.command, {"commit": commit.id, "checkout": str(checkout)})
        self._console.print(" ".join(cmd), Style.DIM)
        built = run_process(cmd, cwd=checkout, timeout=self._timeout)
        if isinstance(built, Err):
            return Err(_command_error("build_failed", "build command failed", built.error))

        output = checkout / self._config.artifact
        try:
            content = output.read_bytes()
        except OSError as e:
            return Err(
                ReleaseError(
                    kind="build_failed",
                    message=f"build output missing: {self._config.artifact}",
                    hint=str(e),
                )
            )
        return Ok(Artifact(commit_id=commit.id, content=content, name=output.name))

    def _remove_checkout(self, checkout: Path) -> None:
        removed = self._git("worktree", "remove", "--force", str(checkout))
        if isinstance(removed, Err):
            self._console.warning(f"could not remove {checkout}: {removed.error}")
        self._git("worktree", "prune")

    def _git(self, *args: str) -> Result[str, ProcessError]:
        return run_process(
            ["git", "-C", str(self._root), *args], cwd=self._root, timeout=_GIT_TIMEOUT_SECONDS
        )


class CommandArtifactRegistry:
    """ArtifactRegistry over ``registry.push`` and ``registry.exists`` commands.

    ``exists`` exiting non-zero means absent unless the failure looks
    transient. Without an ``exists`` command every artifact is pushed.
    """

    def __init__(self, root: Path, config: RegistryConfig, *, timeout: float | None = None):
        self._root = root
        self._config = config
        self._timeout = timeout

    def exists(self, ref: str) -> Result[bool, ReleaseError]:
        if not self._config.exists:
            return Ok(False)

        found = run_process(
            expand(self._config.exists, {"ref": ref}), cwd=self._root, timeout=self._timeout
        )
        if isinstance(found, Ok):
            return Ok(True)
        if is_transient(found.error):
            return Err(_command_error("transient", f"could not look up {ref}", found.error))
        return Ok(False)

    def publish(self, ref: str, content: bytes) -> Result[None, ReleaseError]:
        with _staged(content, "artifact") as path:
            pushed = run_process(
                expand(self._config.push, {"ref": ref, "artifact": str(path)}),
                cwd=self._root,
                timeout=self._timeout,
            )
        if isinstance(pushed, Err):
            return Err(_command_error("package_failed", f"could not push {ref}", pushed.error))
        return Ok(None)


def _check_kind(kind: str) -> CheckKind:
    return "network" if kind == "network" else "unit"


def command_check(config: CheckConfig, root: Path, *, timeout: float | None = None) -> QualityCheck:
    """A QualityCheck running ``config.command`` against the staged artifact."""

    def run(artifact: Artifact) -> Result[None, ReleaseError]:
        with _staged(artifact.content, artifact.name) as path:
            result = run_process(
                expand(config.command, {"artifact": str(path), "commit": artifact.commit_id}),
                cwd=root,
                timeout=timeout,
            )
        if isinstance(result, Err):
            return Err(_command_error("test_failed", config.name, result.error))
        return Ok(None)

    return QualityCheck(name=config.name, kind=_check_kind(config.kind), run=run)
