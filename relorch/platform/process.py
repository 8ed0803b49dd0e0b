"""Subprocess execution with Result-based error handling.

The git and kubectl adapters shell out through ``run`` so that a timeout or
a missing binary is an Err value, not an exception escaping into the
orchestrator.

Usage:
    result = run(["git", "rev-parse", "HEAD"], cwd=repo_root, timeout=30.0)
    match result:
        case Ok(stdout):
            sha = stdout.strip()
        case Err(error):
            print(error)
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from relorch.core.result import Err, Ok, Result

__all__ = ["ProcessError", "is_transient", "run"]


@dataclass(frozen=True, slots=True)
class ProcessError:
    """A command that exited non-zero, timed out, or could not start.

    Attributes:
        command: The command that was executed.
        returncode: Exit code, or -1 when the process never completed.
        stdout: Captured standard output.
        stderr: Captured standard error or the reason it never completed.
        timed_out: True when the timeout expired.
    """

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    def __str__(self) -> str:
        cmd_str = " ".join(self.command[:3])
        if len(self.command) > 3:
            cmd_str += " ..."
        if self.timed_out:
            return f"{cmd_str} timed out"
        return f"{cmd_str} failed (exit {self.returncode})"


def run(
    cmd: list[str],
    cwd: Path,
    env: dict[str, str] | None = None,
    *,
    timeout: float | None = None,
) -> Result[str, ProcessError]:
    """Execute a command and return its stdout.

    Args:
        cmd: Command and arguments to execute.
        cwd: Working directory for the command.
        env: Environment variables (uses current env if None).
        timeout: Maximum seconds to wait (None for no limit).

    Returns:
        Ok(stdout) on exit code 0, Err(ProcessError) otherwise.
    """
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd),
            env=env,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        stdout = e.stdout if isinstance(e.stdout, str) else ""
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=-1,
                stdout=stdout,
                stderr=f"Command timed out after {timeout}s",
                timed_out=True,
            )
        )
    except OSError as e:
        return Err(ProcessError(command=tuple(cmd), returncode=-1, stdout="", stderr=str(e)))

    if proc.returncode != 0:
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=proc.returncode,
                stdout=proc.stdout,
                stderr=proc.stderr,
            )
        )

    return Ok(proc.stdout)


_TRANSIENT_MARKERS = (
    "timed out",
    "timeout",
    "connection reset",
    "connection refused",
    "temporarily unavailable",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
    "tls handshake timeout",
    "network is unreachable",
    "could not resolve host",
    "remote end hung up unexpectedly",
    "unable to connect to the server",
    "http 429",
    "http 500",
    "http 502",
    "http 503",
    "http 504",
)


def is_transient(error: ProcessError) -> bool:
    """Whether a failed command looks like a network hiccup worth retrying."""
    if error.timed_out:
        return True
    text = f"{error.stderr}\n{error.stdout}".lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)
