from __future__ import annotations

import threading
import time
from collections.abc import Callable

__all__ = ["Deadline"]


class Deadline:
    """Deadline of a worker that must not start an irreversible step late.

    The worker calls ``commit`` right before its point of no return; the
    owner calls ``expire`` once it stops waiting. Exactly one of the two
    wins: a committed worker is waited for, an expired one stops before
    writing anything.
    """

    def __init__(self, seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._ends_at = clock() + seconds
        self._lock = threading.Lock()
        self._state: str | None = None

    @property
    def expired(self) -> bool:
        with self._lock:
            if self._state is None and self._clock() >= self._ends_at:
                self._state = "expired"
            return self._state == "expired"

    @property
    def committed(self) -> bool:
        with self._lock:
            return self._state == "committed"

    def commit(self) -> bool:
        """Pass the point of no return. False when the deadline already expired."""
        with self._lock:
            if self._state is None:
                self._state = "expired" if self._clock() >= self._ends_at else "committed"
            return self._state == "committed"

    def expire(self) -> bool:
        """Stop waiting. False when the worker already committed."""
        with self._lock:
            if self._state is None:
                self._state = "expired"
            return self._state == "expired"
