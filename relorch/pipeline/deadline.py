from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TypeVar

from relorch.core.deadline import Deadline
from relorch.core.result import Err, Result
from relorch.release.errors import ErrorKind, ReleaseError

__all__ = ["Deadline", "run_with_deadline", "run_with_timeout"]

T = TypeVar("T")


def _spawn(
    fn: Callable[[], Result[T, ReleaseError]],
    box: list[Result[T, ReleaseError]],
    *,
    what: str,
    crash_kind: ErrorKind,
) -> threading.Thread:
    def target() -> None:
        try:
            box.append(fn())
        except Exception as e:  # noqa: BLE001 - collaborator code, reported as a phase failure
            message = f"{what} crashed: {type(e).__name__}: {e}"
            box.append(Err(ReleaseError(kind=crash_kind, message=message)))

    worker = threading.Thread(target=target, name=f"relorch-{what}", daemon=True)
    worker.start()
    return worker


def _timed_out(what: str, seconds: float) -> Err[ReleaseError]:
    return Err(ReleaseError(kind="timeout", message=f"{what} exceeded {seconds:g}s"))


def run_with_timeout(
    fn: Callable[[], Result[T, ReleaseError]],
    *,
    seconds: float,
    what: str,
    crash_kind: ErrorKind,
) -> Result[T, ReleaseError]:
    """Run ``fn`` in a worker thread and give up after ``seconds``.

    An expired deadline is an Err(timeout). The worker cannot be killed, so
    it is a daemon thread and its late result is discarded. An exception
    raised by ``fn`` becomes Err(crash_kind) so that it fails the phase
    instead of the orchestrator.
    """
    box: list[Result[T, ReleaseError]] = []
    worker = _spawn(fn, box, what=what, crash_kind=crash_kind)
    worker.join(seconds)

    if worker.is_alive() or not box:
        return _timed_out(what, seconds)
    return box[0]


def run_with_deadline(
    fn: Callable[[Deadline], Result[T, ReleaseError]],
    *,
    seconds: float,
    what: str,
    crash_kind: ErrorKind,
) -> Result[T, ReleaseError]:
    """Like ``run_with_timeout``, for work with a point of no return.

    ``fn`` receives a Deadline and calls ``commit`` on it before its first
    irreversible write. If the deadline passes first the result is
    Err(timeout) and ``fn`` is refused the commit. If ``fn`` committed in
    time, its real result is waited for, however long it takes.
    """
    deadline = Deadline(seconds)
    box: list[Result[T, ReleaseError]] = []
    worker = _spawn(lambda: fn(deadline), box, what=what, crash_kind=crash_kind)
    worker.join(seconds)

    if worker.is_alive() and not deadline.expire():
        worker.join()

    if worker.is_alive() or not box:
        return _timed_out(what, seconds)
    return box[0]
