"""Per-branch mutual exclusion for Decision+Cut.

Waiters are served in arrival order. A waiter that gives up leaves the queue
without disturbing the others. Ownership is not tied to a thread: the
decision worker releases a lock acquired by the task that started it.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field

__all__ = ["BranchLocks"]


def _waiters() -> deque[object]:
    return deque()


@dataclass(slots=True)
class _BranchLock:
    held: bool = False
    waiters: deque[object] = field(default_factory=_waiters)


class BranchLocks:
    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._branches: dict[str, _BranchLock] = {}

    def acquire(self, branch: str, *, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for ``branch``. Returns False on contention."""
        ticket = object()
        deadline = time.monotonic() + max(0.0, timeout)

        with self._cond:
            lock = self._branches.setdefault(branch, _BranchLock())
            lock.waiters.append(ticket)

            while lock.held or lock.waiters[0] is not ticket:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    lock.waiters.remove(ticket)
                    self._cond.notify_all()
                    return False
                self._cond.wait(remaining)

            lock.waiters.popleft()
            lock.held = True
            return True

    def release(self, branch: str) -> None:
        with self._cond:
            lock = self._branches.get(branch)
            if lock is None or not lock.held:
                raise RuntimeError(f"branch lock {branch!r} is not held")
            lock.held = False
            self._cond.notify_all()

    def is_held(self, branch: str) -> bool:
        with self._cond:
            lock = self._branches.get(branch)
            return lock is not None and lock.held
