"""Per-root-session locks serializing engine calls on one conversation."""

import threading
from contextlib import contextmanager
from typing import Generator


class SessionLockRegistry:
    """Hands out one lock per root session.

    Two channels bound to the same root would otherwise resume the same
    engine session concurrently and fork its history.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def lock_for(self, root_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(root_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[root_id] = lock
            return lock

    @contextmanager
    def hold(self, root_id: int) -> Generator[None, None, None]:
        """Hold the lock of a root session for the duration of the block."""
        lock = self.lock_for(root_id)
        with lock:
            yield

    def discard(self, root_id: int) -> None:
        """Forget the lock of a deleted root session."""
        with self._guard:
            self._locks.pop(root_id, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
